"""Secure credential storage using system keyring."""

import logging

import keyring
import keyring.errors

logger = logging.getLogger(__name__)

# Keyring service name for notesync
SERVICE_NAME = "notesync"


class CredentialStore:
    """Manages the remote API token in the system keyring."""

    def __init__(self, service_name: str = SERVICE_NAME):
        """
        Initialize credential store.

        Args:
            service_name: Name of the service in keyring (default: "notesync")
        """
        self.service_name = service_name

    @staticmethod
    def _key(user: str) -> str:
        return f"api:{user}"

    def set_api_token(self, user: str, token: str) -> None:
        """
        Store the API token for a user.

        Raises:
            keyring.errors.PasswordSetError: If the token cannot be stored
        """
        try:
            keyring.set_password(self.service_name, self._key(user), token)
            logger.info(f"Stored API token for user: {user}")
        except Exception as e:
            logger.error(f"Failed to store API token: {e}")
            raise

    def get_api_token(self, user: str) -> str | None:
        """
        Retrieve the API token for a user.

        Returns:
            Token if found, None otherwise
        """
        try:
            token = keyring.get_password(self.service_name, self._key(user))
            if token:
                logger.debug(f"Retrieved API token for user: {user}")
            else:
                logger.debug(f"No API token found for user: {user}")
            return token
        except Exception as e:
            logger.error(f"Failed to retrieve API token: {e}")
            return None

    def delete_api_token(self, user: str) -> bool:
        """
        Delete the API token for a user.

        Returns:
            True if deleted, False if not found or error
        """
        try:
            keyring.delete_password(self.service_name, self._key(user))
            logger.info(f"Deleted API token for user: {user}")
            return True
        except keyring.errors.PasswordDeleteError:
            logger.warning(f"No API token found to delete for user: {user}")
            return False
        except Exception as e:
            logger.error(f"Failed to delete API token: {e}")
            return False

    def has_api_token(self, user: str) -> bool:
        return self.get_api_token(user) is not None
