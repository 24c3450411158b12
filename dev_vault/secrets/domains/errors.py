"""Exception hierarchy for dev-vault.

Messages only ever carry secret names, paths, IDs, revisions and types.
Secret payloads must never be interpolated into an exception message.
"""
from typing import Iterable, Optional


class DevVaultError(Exception):
    """Base class for all dev-vault errors."""
    pass


class UsageError(DevVaultError):
    """Bad target selection or flag combination (CLI exit code 2)."""
    pass


class ConfigError(DevVaultError):
    """Configuration error exception."""
    pass


class SecretNotFoundError(DevVaultError):
    """No secret in the store matches a (name, path) pair."""

    def __init__(self, name: str, path: str):
        self.name = name
        self.path = path
        super().__init__(f"secret not found: name={name} path={path}")


class AmbiguousSecretError(DevVaultError):
    """Several secrets share one (name, path) pair."""

    def __init__(self, name: str, path: str, ids: Iterable[str]):
        self.name = name
        self.path = path
        self.ids = sorted(ids)
        super().__init__(
            f"multiple secrets match name={name} path={path}: {','.join(self.ids)}"
        )


class TypeMismatchError(DevVaultError):
    """Declared mapping type differs from the type stored remotely."""

    def __init__(self, name: str, expected: str, actual: str):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(f"secret {name}: type mismatch (expected {expected} got {actual})")


class SecretAPIError(DevVaultError):
    """A secret store call failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class FilesystemError(DevVaultError):
    """A local file could not be read or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class DestinationExistsError(FilesystemError):
    """Destination already exists and overwrite was not requested."""

    def __init__(self, path: str):
        super().__init__(f"file exists: {path}", path=path)


class PayloadFormatError(DevVaultError):
    """A secret payload does not have the shape its mapping format requires."""
    pass


class DotenvParseError(PayloadFormatError):
    """Dotenv text could not be parsed. Carries the 1-based line number only."""

    def __init__(self, line: int, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"line {line}: {reason}")


class SyncError(DevVaultError):
    """A per-target failure in a pull or push batch.

    The message is prefixed with the stage and target name; the original
    exception is kept on .cause (and __cause__) so callers can branch on it.
    """

    def __init__(self, stage: str, name: str, cause: Exception):
        self.stage = stage
        self.name = name
        self.cause = cause
        super().__init__(f"{stage} {name}: {cause}")
