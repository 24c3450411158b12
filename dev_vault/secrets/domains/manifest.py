"""Project manifest loader.

The manifest (``.dev-vault.json`` by default) maps each ``*-dev`` secret to a
local file and a sync policy. It is located by searching upward from the
working directory, so any subdirectory of a project works.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError
from .models import (
    DEFAULT_PATH,
    FORMAT_RAW,
    FORMATS,
    MODE_BOTH,
    MODE_LEGACY_SYNC,
    MODES,
    SECRET_TYPES,
    MappingEntry,
    is_dev_secret_name,
    is_valid_secret_type,
)

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_NAME = ".dev-vault.json"

_TOP_LEVEL_KEYS = {"project_id", "region", "credentials", "mapping"}
_ENTRY_KEYS = {"file", "format", "path", "mode", "type"}


@dataclass
class LoadedManifest:
    """A validated manifest. root is the directory holding the manifest file."""
    path: str
    root: str
    project_id: str
    region: str
    mapping: Dict[str, MappingEntry]
    credentials: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


def find_manifest_path(start_dir: str) -> str:
    """
    Search start_dir and its parents for the manifest file.

    Raises:
        ConfigError: If no manifest is found up to the filesystem root
    """
    if not start_dir:
        raise ConfigError("start directory is empty")

    directory = os.path.abspath(start_dir)
    while True:
        candidate = os.path.join(directory, DEFAULT_MANIFEST_NAME)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(directory)
        if parent == directory:
            break
        directory = parent

    raise ConfigError(f"{DEFAULT_MANIFEST_NAME} not found from {start_dir} upward")


def load_manifest(start_dir: str, explicit_path: Optional[str] = None) -> LoadedManifest:
    """
    Load and validate the project manifest.

    Args:
        start_dir: Directory to search upward from (usually the cwd)
        explicit_path: Manifest path from --config; relative paths are joined
            to start_dir

    Returns:
        LoadedManifest with normalized entries and any deprecation warnings

    Raises:
        ConfigError: If the manifest is missing, unparsable or invalid
    """
    if explicit_path:
        path = explicit_path if os.path.isabs(explicit_path) else os.path.join(start_dir, explicit_path)
    else:
        path = find_manifest_path(start_dir)
    path = os.path.abspath(path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse manifest at {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read manifest at {path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Manifest at {path} must contain a single top-level object")

    unknown = sorted(set(raw) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigError(f"Unknown field(s) in manifest at {path}: {', '.join(map(str, unknown))}")

    project_id = _required_string(raw, "project_id")
    region = _required_string(raw, "region")

    if raw.get("mapping") is None:
        raise ConfigError("missing required field: mapping")
    if not isinstance(raw["mapping"], dict):
        raise ConfigError("mapping must be an object")
    if not raw["mapping"]:
        raise ConfigError("mapping is empty")

    root = os.path.dirname(path)
    warnings: List[str] = []
    mapping = {}
    for name, entry in raw["mapping"].items():
        mapping[str(name)] = _normalize_entry(str(name), entry, warnings)

    credentials = raw.get("credentials")
    if credentials is not None:
        if not isinstance(credentials, str) or not credentials.strip():
            raise ConfigError("credentials must be a non-empty path string")
        credentials = os.path.normpath(os.path.join(root, credentials.strip()))

    logger.info(f"Manifest loaded from {path} ({len(mapping)} mapping entries)")
    return LoadedManifest(
        path=path,
        root=root,
        project_id=project_id,
        region=region,
        mapping=mapping,
        credentials=credentials,
        warnings=warnings,
    )


def _required_string(raw: Dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"missing required field: {key}")
    return value.strip()


def _normalize_entry(name: str, raw: Any, warnings: List[str]) -> MappingEntry:
    if not is_dev_secret_name(name):
        raise ConfigError(f"mapping key {name!r} must end with -dev")
    if not isinstance(raw, dict):
        raise ConfigError(f"mapping {name!r}: entry must be an object")

    unknown = sorted(set(raw) - _ENTRY_KEYS)
    if unknown:
        raise ConfigError(f"mapping {name!r}: unknown field(s): {', '.join(map(str, unknown))}")

    file = str(raw.get("file") or "").strip()
    if not file:
        raise ConfigError(f"mapping {name!r}: missing required field: file")
    if os.path.isabs(file):
        raise ConfigError(f"mapping {name!r}: file must be relative, got {file!r}")

    fmt = raw.get("format") or FORMAT_RAW
    if fmt not in FORMATS:
        raise ConfigError(f"mapping {name!r}: invalid format {fmt!r}")

    path = raw.get("path") or DEFAULT_PATH
    if not isinstance(path, str) or not path.startswith("/"):
        raise ConfigError(f"mapping {name!r}: path must start with '/', got {path!r}")

    mode = raw.get("mode") or MODE_BOTH
    if mode == MODE_LEGACY_SYNC:
        warnings.append(
            f"mapping {name!r} uses legacy mode=sync; use mode=both "
            f"(sync will be removed in a future major release)"
        )
        mode = MODE_BOTH
    if mode not in MODES:
        raise ConfigError(f"mapping {name!r}: invalid mode {mode!r}")

    secret_type = str(raw.get("type") or "").strip()
    if secret_type and not is_valid_secret_type(secret_type):
        raise ConfigError(
            f"mapping {name!r}: invalid type {secret_type!r} "
            f"(expected one of: {', '.join(SECRET_TYPES)})"
        )

    return MappingEntry(file=file, format=fmt, path=path, mode=mode, type=secret_type)


def resolve_file(root: str, rel: str) -> str:
    """
    Resolve a mapping file path under the project root.

    Raises:
        ConfigError: If rel is empty, absolute, or escapes root
    """
    if not root:
        raise ConfigError("root directory is empty")
    if not rel:
        raise ConfigError("relative path is empty")
    if os.path.isabs(rel):
        raise ConfigError(f"path must be relative: {rel!r}")

    abs_root = os.path.abspath(root)
    abs_path = os.path.abspath(os.path.join(abs_root, rel))
    rel_to_root = os.path.relpath(abs_path, abs_root)
    if rel_to_root == os.pardir or rel_to_root.startswith(os.pardir + os.sep):
        raise ConfigError(f"path escapes project root: {rel!r}")
    return abs_path
