"""
Broker credential resolution.

The password either lives in the OS keyring or in a plain file. A plain
file is only trusted when nobody but the current user can read it.
"""

import logging
import os
import stat
from dataclasses import dataclass, field
from typing import Optional

import keyring
from keyring.errors import KeyringError

from .config import KeyringSource, PasswordSource, SecretFileSource
from .errors import CredentialError, CredentialReason


logger = logging.getLogger(__name__)

SECRET_FILE_MODE = 0o600

USERNAME_REQUIRED = (
    "You must set the username for login with the MQTT server "
    "before you can set the user's password"
)


@dataclass
class BrokerCredentials:
    """Username and plaintext password for the broker."""

    username: str
    password: str = field(repr=False)


class CredentialResolver:
    """
    Resolves the broker password from the configured source.

    The keyring service name namespaces the stored passwords and is
    passed in by the caller.
    """

    def __init__(self, service_name: str):
        self.service_name = service_name

    def credentials_for(
        self, username: Optional[str], source: PasswordSource
    ) -> Optional[BrokerCredentials]:
        """Credentials to connect with, or None for an anonymous connection."""
        if not username:
            return None
        return BrokerCredentials(username=username, password=self.resolve(username, source))

    def resolve(self, username: str, source: PasswordSource) -> str:
        """Get the password for `username` from `source`."""
        if isinstance(source, KeyringSource):
            logger.info("Using system keyring for MQTT password source.")
            return self._from_keyring(username)
        if isinstance(source, SecretFileSource):
            logger.info("Using hidden file for MQTT password source.")
            return self._from_secret_file(source.path)
        raise TypeError(f"Unsupported password source: {source!r}")

    def store(self, username: Optional[str], secret: str):
        """Save `secret` as the keyring password for `username`."""
        if not username:
            raise CredentialError(CredentialReason.NOT_SET, USERNAME_REQUIRED)
        try:
            keyring.set_password(self.service_name, username, secret)
        except KeyringError as e:
            raise CredentialError(CredentialReason.NOT_SET, f"Keyring error: {e}") from e
        logger.info(f"Stored MQTT password for {username} in the system keyring")

    def _from_keyring(self, username: str) -> str:
        try:
            password = keyring.get_password(self.service_name, username)
        except KeyringError as e:
            raise CredentialError(
                CredentialReason.NOT_SET, f"Failed to get password from keyring: {e}"
            ) from e

        if password is None:
            raise CredentialError(
                CredentialReason.NOT_SET,
                "Failed to get password from keyring. If you have not yet set "
                "the password, run `system-mqtt set-password`.",
            )
        return password

    def _from_secret_file(self, path: str) -> str:
        try:
            st = os.stat(path)
        except OSError as e:
            raise CredentialError(
                CredentialReason.UNREADABLE, f"Failed to get password file metadata: {e}"
            ) from e

        # Checked in this order; the first violation wins.
        if stat.S_IMODE(st.st_mode) != SECRET_FILE_MODE:
            raise CredentialError(
                CredentialReason.BAD_PERMISSIONS,
                "Permission bits for password file must be set to 0o600 "
                "(only owner can read and write)",
            )
        if st.st_uid != os.getuid():
            raise CredentialError(
                CredentialReason.WRONG_OWNER,
                "Password file must be owned by the current user.",
            )
        if st.st_gid != os.getgid():
            raise CredentialError(
                CredentialReason.WRONG_GROUP,
                "Password file must be owned by the current group.",
            )

        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read().strip()
        except (OSError, UnicodeDecodeError) as e:
            raise CredentialError(
                CredentialReason.UNREADABLE, f"Failed to read password file: {e}"
            ) from e
