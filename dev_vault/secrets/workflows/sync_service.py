"""Secret sync workflows: list, pull and push.

Batches abort on the first failing target. Targets processed before the
failure keep their effects (files written, versions created); nothing is
rolled back. Callers that need per-target outcomes should call pull/push
with one target at a time.
"""
import logging
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ..domains.atomic_writer import atomic_write_file
from ..domains.dotenv_codec import dotenv_to_json, json_to_dotenv
from ..domains.errors import (
    ConfigError,
    DevVaultError,
    FilesystemError,
    SecretAPIError,
    SecretNotFoundError,
    SyncError,
    TypeMismatchError,
    UsageError,
)
from ..domains.manifest import LoadedManifest, resolve_file
from ..domains.models import (
    FORMAT_DOTENV,
    REVISION_LATEST_ENABLED,
    SECRET_TYPES,
    AccessSecretVersionInput,
    CreateSecretInput,
    CreateSecretVersionInput,
    ListQuery,
    ListRecord,
    MappingEntry,
    MappingTarget,
    ProjectScope,
    PullResult,
    PushOptions,
    PushResult,
    SecretRecord,
    is_dev_secret_name,
    is_valid_secret_type,
)
from ..domains.secret_api import SecretAPI
from ..domains.secret_index import SecretIndex
from ..domains.selection import select_targets

logger = logging.getLogger(__name__)

PULL_FILE_MODE = 0o600
UNKNOWN_HOST = "unknown-host"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ServiceConfig:
    root: str
    region: str = ""
    project_id: str = ""
    mapping: Dict[str, MappingEntry] = field(default_factory=dict)


class SyncService:
    """
    Moves secret payloads between the store and mapped local files.

    Args:
        config: Project root, store scope and manifest mapping
        api: Secret store capability
        now: Clock used for default push descriptions
        hostname: Host name provider used for default push descriptions
    """

    def __init__(self, config: ServiceConfig, api: SecretAPI,
                 now: Optional[Callable[[], datetime]] = None,
                 hostname: Optional[Callable[[], str]] = None):
        self.config = config
        self.api = api
        self.now = now or _utc_now
        self.hostname = hostname or socket.gethostname

    @classmethod
    def from_manifest(cls, loaded: LoadedManifest, api: SecretAPI,
                      project_id: Optional[str] = None, **deps) -> "SyncService":
        """Wire a service from a loaded manifest; project_id overrides the manifest's."""
        return cls(ServiceConfig(
            root=loaded.root,
            region=loaded.region,
            project_id=project_id or loaded.project_id,
            mapping=loaded.mapping,
        ), api, **deps)

    @property
    def scope(self) -> ProjectScope:
        return ProjectScope(region=self.config.region, project_id=self.config.project_id)

    def select_targets(self, all_: bool, names: Sequence[str], mode: str) -> List[MappingTarget]:
        """Select targets from the configured mapping (see selection.select_targets)."""
        return select_targets(self.config.mapping, all_, names, mode)

    def _call(self, operation: str, fn, req):
        try:
            return fn(req)
        except DevVaultError:
            raise
        except Exception as e:
            raise SecretAPIError(operation, str(e)) from e

    def list(self, query: ListQuery) -> List[ListRecord]:
        """
        List -dev secrets in the store matching query. Never reads payloads.

        Raises:
            UsageError: If query.type is not a known secret type
            SecretAPIError: If a store call fails
        """
        types = SECRET_TYPES
        if query.type:
            if not is_valid_secret_type(query.type):
                raise UsageError(f"invalid --type: unknown secret type {query.type!r}")
            types = (query.type,)

        index = SecretIndex.build(self.api, self.scope, types, path=query.path or None)

        records = []
        for record in index.records():
            if not is_dev_secret_name(record.name):
                continue
            if query.path and record.path != query.path:
                continue
            if any(part not in record.name for part in query.name_contains):
                continue
            if query.name_regex is not None and not query.name_regex.search(record.name):
                continue
            records.append(ListRecord(id=record.id, name=record.name, path=record.path, type=record.type))

        records.sort(key=lambda r: (r.name, r.path, r.id))
        logger.info(f"Listed {len(records)} dev secrets")
        return records

    def _require_dev_names(self, targets: Sequence[MappingTarget]) -> None:
        for target in targets:
            if not is_dev_secret_name(target.name):
                raise UsageError(f"refusing non-dev secret name: {target.name}")

    def _check_type(self, target: MappingTarget, record: SecretRecord) -> None:
        expected = target.entry.type
        if expected and record.type != expected:
            raise TypeMismatchError(target.name, expected, record.type)

    def pull(self, targets: Sequence[MappingTarget], overwrite: bool = False) -> List[PullResult]:
        """
        Pull each target's latest enabled version into its mapped file.

        Files are written atomically with mode 0600; dotenv targets are
        rendered from the stored JSON object.

        Raises:
            SyncError: For the first failing target; .cause holds the
                underlying error (ConfigError, SecretNotFoundError,
                AmbiguousSecretError, TypeMismatchError, SecretAPIError,
                PayloadFormatError, FilesystemError/DestinationExistsError)
        """
        if not targets:
            return []
        self._require_dev_names(targets)
        index = SecretIndex.build(self.api, self.scope)

        results = []
        for target in targets:
            try:
                out_path = resolve_file(self.config.root, target.entry.file)
            except ConfigError as e:
                raise SyncError("mapping", target.name, e) from e

            try:
                record = index.resolve(target.name, target.entry.path)
            except DevVaultError as e:
                raise SyncError("resolve", target.name, e) from e

            try:
                self._check_type(target, record)
            except TypeMismatchError as e:
                raise SyncError("pull", target.name, e) from e

            try:
                access = self._call("access secret version", self.api.access_secret_version,
                                    AccessSecretVersionInput(
                                        secret_id=record.id,
                                        region=self.config.region,
                                        revision=REVISION_LATEST_ENABLED,
                                    ))
            except DevVaultError as e:
                raise SyncError("access", target.name, e) from e

            payload = access.data
            if target.entry.format == FORMAT_DOTENV:
                try:
                    payload = json_to_dotenv(payload)
                except DevVaultError as e:
                    raise SyncError("format dotenv", target.name, e) from e

            try:
                atomic_write_file(out_path, payload, PULL_FILE_MODE, overwrite)
            except FilesystemError as e:
                raise SyncError("pull", target.name, e) from e

            logger.info(f"Pulled {target.name} -> {target.entry.file} (rev={access.revision})")
            results.append(PullResult(
                name=target.name,
                revision=access.revision,
                file=target.entry.file,
                type=access.type or record.type,
            ))
        return results

    def push_description(self, explicit: str = "") -> str:
        """Return explicit, or 'dev-vault push <RFC3339 UTC> <hostname>'."""
        if explicit:
            return explicit
        try:
            host = self.hostname() or UNKNOWN_HOST
        except OSError:
            host = UNKNOWN_HOST
        stamp = self.now().astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return f"dev-vault push {stamp} {host}"

    def _read_push_payload(self, target: MappingTarget) -> bytes:
        try:
            in_path = resolve_file(self.config.root, target.entry.file)
        except ConfigError as e:
            raise SyncError("mapping", target.name, e) from e

        try:
            with open(in_path, "rb") as f:
                raw = f.read()
        except OSError as e:
            err = FilesystemError(f"read {in_path}: {e.strerror or e}", path=in_path)
            err.__cause__ = e
            raise SyncError("push", target.name, err) from err

        if target.entry.format == FORMAT_DOTENV:
            try:
                return dotenv_to_json(raw)
            except DevVaultError as e:
                raise SyncError("format dotenv", target.name, e) from e
        return raw

    def _resolve_push_secret(self, index: SecretIndex, target: MappingTarget,
                             create_missing: bool) -> SecretRecord:
        entry = target.entry
        try:
            record = index.resolve(target.name, entry.path)
        except SecretNotFoundError as e:
            if not create_missing:
                raise SyncError("resolve", target.name, e) from e
            record = None
        except DevVaultError as e:
            raise SyncError("resolve", target.name, e) from e

        if record is not None:
            try:
                self._check_type(target, record)
            except TypeMismatchError as e:
                raise SyncError("push", target.name, e) from e
            return record

        if not entry.type:
            raise SyncError("push", target.name, ConfigError("create-missing requires mapping.type"))
        if not is_valid_secret_type(entry.type):
            raise SyncError("push", target.name, ConfigError(f"invalid mapping.type {entry.type!r}"))

        try:
            created = self._call("create secret", self.api.create_secret, CreateSecretInput(
                name=target.name,
                type=entry.type,
                path=entry.path,
                region=self.config.region,
                project_id=self.config.project_id,
            ))
        except DevVaultError as e:
            raise SyncError("push", target.name, e) from e

        logger.info(f"Created missing secret {target.name} (type={entry.type}, path={entry.path})")
        index.add(created)
        return created

    def push(self, targets: Sequence[MappingTarget], options: Optional[PushOptions] = None) -> List[PushResult]:
        """
        Upload each target's local file as a new secret version.

        Pushing more than one target must be confirmed by the caller (the CLI
        requires --yes); this method does not relax that gate.

        Raises:
            SyncError: For the first failing target; .cause holds the
                underlying error. A NotFound cause means the secret is absent
                and create_missing was off.
        """
        options = options or PushOptions()
        if not targets:
            return []
        self._require_dev_names(targets)
        description = self.push_description(options.description)
        index = SecretIndex.build(self.api, self.scope)

        results = []
        for target in targets:
            payload = self._read_push_payload(target)
            record = self._resolve_push_secret(index, target, options.create_missing)

            try:
                version = self._call("create secret version", self.api.create_secret_version,
                                     CreateSecretVersionInput(
                                         secret_id=record.id,
                                         data=payload,
                                         region=self.config.region,
                                         description=description,
                                         disable_previous=True if options.disable_previous else None,
                                     ))
            except DevVaultError as e:
                raise SyncError("push", target.name, e) from e

            logger.info(f"Pushed {target.name} (rev={version.revision})")
            results.append(PushResult(name=target.name, revision=version.revision))
        return results
