"""Sync core: models, queue, merge and orchestration."""
