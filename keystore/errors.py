"""Custom exception classes for Keystore."""

from typing import Optional


class KeystoreError(Exception):
    """Base class for all custom exceptions in Keystore."""

    pass


class ConfigError(KeystoreError):
    """Raised at startup when required configuration is missing or invalid.

    The offending variable is named in the message; its value never is.
    """

    def __init__(self, message: str, var_name: Optional[str] = None):
        self.var_name = var_name
        full_msg = "Configuration error"
        if var_name:
            full_msg += f" ({var_name})"
        full_msg += f": {message}"
        super().__init__(full_msg)


class StoreInitError(KeystoreError):
    """Raised when the credential store file cannot be read, decrypted or decoded.

    Fatal at startup: the process must not serve traffic with a store it
    cannot trust.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        full_msg = message
        if path:
            full_msg += f" (store: {path})"
        super().__init__(full_msg)


class DecryptionError(KeystoreError):
    """Raised when an authenticated-encryption tag fails to verify.

    Always carries the same message so callers cannot tell a wrong key from
    a tampered or truncated payload.
    """

    def __init__(self) -> None:
        super().__init__("Decryption failed.")


class CorruptStoreError(KeystoreError):
    """Raised when a decrypted payload or file envelope has an invalid structure."""

    pass


class ValidationError(KeystoreError):
    """Raised when an admin request body is malformed."""

    pass


class AuthError(KeystoreError):
    """Raised when a request carries a missing or wrong admin token."""

    def __init__(self) -> None:
        super().__init__("Unauthorized")
