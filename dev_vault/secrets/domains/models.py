"""Domain models for secret synchronization."""
from dataclasses import dataclass, field
from typing import List, Optional, Pattern

DEV_SUFFIX = "-dev"

FORMAT_RAW = "raw"
FORMAT_DOTENV = "dotenv"
FORMATS = (FORMAT_RAW, FORMAT_DOTENV)

MODE_PULL = "pull"
MODE_PUSH = "push"
MODE_BOTH = "both"
MODE_LEGACY_SYNC = "sync"
MODES = (MODE_PULL, MODE_PUSH, MODE_BOTH)

TYPE_OPAQUE = "opaque"
TYPE_CERTIFICATE = "certificate"
TYPE_KEY_VALUE = "key_value"
TYPE_BASIC_CREDENTIALS = "basic_credentials"
TYPE_DATABASE_CREDENTIALS = "database_credentials"
TYPE_SSH_KEY = "ssh_key"

# Sorted: the lookup index sweeps the store in this order.
SECRET_TYPES = (
    TYPE_BASIC_CREDENTIALS,
    TYPE_CERTIFICATE,
    TYPE_DATABASE_CREDENTIALS,
    TYPE_KEY_VALUE,
    TYPE_OPAQUE,
    TYPE_SSH_KEY,
)

REVISION_LATEST_ENABLED = "latest_enabled"

DEFAULT_PATH = "/"


def is_dev_secret_name(name: str) -> bool:
    """Return True if name carries the mandatory -dev suffix."""
    return name.endswith(DEV_SUFFIX)


def is_valid_secret_type(name: str) -> bool:
    return name in SECRET_TYPES


@dataclass(frozen=True)
class MappingEntry:
    """One manifest entry: where a secret lives locally and how it syncs."""
    file: str
    format: str = FORMAT_RAW
    path: str = DEFAULT_PATH
    mode: str = MODE_BOTH
    type: str = ""

    def allows_pull(self) -> bool:
        return self.mode in (MODE_PULL, MODE_BOTH)

    def allows_push(self) -> bool:
        return self.mode in (MODE_PUSH, MODE_BOTH)


@dataclass(frozen=True)
class MappingTarget:
    """A selected (name, entry) pair for a single sync invocation."""
    name: str
    entry: MappingEntry


@dataclass
class SecretRecord:
    """Store-side identity of a secret (never the payload)."""
    id: str
    project_id: str
    name: str
    path: str
    type: str


@dataclass
class SecretVersionRecord:
    """One secret version. data is kept out of repr so it never reaches logs."""
    secret_id: str
    revision: int
    data: bytes = field(default=b"", repr=False)
    type: str = ""
    status: str = ""


@dataclass
class ListSecretsInput:
    region: str = ""
    project_id: str = ""
    name: str = ""
    path: str = ""
    type: str = ""


@dataclass
class AccessSecretVersionInput:
    secret_id: str
    region: str = ""
    revision: str = REVISION_LATEST_ENABLED


@dataclass
class CreateSecretInput:
    name: str
    type: str
    path: str = DEFAULT_PATH
    region: str = ""
    project_id: str = ""


@dataclass
class CreateSecretVersionInput:
    secret_id: str
    data: bytes = field(repr=False)
    region: str = ""
    description: Optional[str] = None
    disable_previous: Optional[bool] = None


@dataclass
class ProjectScope:
    """Region and project every store call is issued against."""
    region: str = ""
    project_id: str = ""


@dataclass
class ListQuery:
    """Filters for the list operation. All filters are ANDed."""
    name_contains: List[str] = field(default_factory=list)
    name_regex: Optional[Pattern[str]] = None
    path: str = ""
    type: str = ""


@dataclass
class ListRecord:
    id: str
    name: str
    path: str
    type: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "path": self.path, "type": self.type}


@dataclass
class PullResult:
    name: str
    revision: int
    file: str = ""
    type: str = ""


@dataclass
class PushOptions:
    description: str = ""
    disable_previous: bool = False
    create_missing: bool = False


@dataclass
class PushResult:
    name: str
    revision: int
