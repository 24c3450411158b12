"""Shared fixtures: an in-memory secret store."""
from dataclasses import dataclass
from typing import Dict, List, Optional

import pytest

from dev_vault.secrets.domains.models import (
    REVISION_LATEST_ENABLED,
    AccessSecretVersionInput,
    CreateSecretInput,
    CreateSecretVersionInput,
    ListSecretsInput,
    SecretRecord,
    SecretVersionRecord,
)


@dataclass
class FakeVersion:
    revision: int
    enabled: bool
    data: bytes
    description: Optional[str] = None


class FakeSecretAPI:
    """In-memory SecretAPI recording every call."""

    def __init__(self):
        self.secrets: List[SecretRecord] = []
        self.versions: Dict[str, List[FakeVersion]] = {}
        self.calls: List[tuple] = []
        self.list_error: Optional[Exception] = None
        self.access_error: Optional[Exception] = None
        self.create_secret_error: Optional[Exception] = None
        self.create_version_error: Optional[Exception] = None

    def add_secret(self, name, path="/", type="opaque", project_id="proj", id=None) -> SecretRecord:
        record = SecretRecord(
            id=id or f"sec-{name}-{len(self.secrets)}",
            project_id=project_id,
            name=name,
            path=path,
            type=type,
        )
        self.secrets.append(record)
        self.versions.setdefault(record.id, [])
        return record

    def add_enabled_version(self, secret_id: str, data: bytes) -> int:
        versions = self.versions.setdefault(secret_id, [])
        revision = len(versions) + 1
        versions.append(FakeVersion(revision=revision, enabled=True, data=data))
        return revision

    def _find(self, secret_id: str) -> SecretRecord:
        for record in self.secrets:
            if record.id == secret_id:
                return record
        raise RuntimeError("unknown secret")

    def list_secrets(self, req: ListSecretsInput) -> List[SecretRecord]:
        self.calls.append(("list", req))
        if self.list_error:
            raise self.list_error
        out = []
        for record in self.secrets:
            if req.project_id and record.project_id != req.project_id:
                continue
            if req.name and record.name != req.name:
                continue
            if req.path and record.path != req.path:
                continue
            if req.type and record.type != req.type:
                continue
            out.append(record)
        return out

    def access_secret_version(self, req: AccessSecretVersionInput) -> SecretVersionRecord:
        self.calls.append(("access", req))
        if self.access_error:
            raise self.access_error
        record = self._find(req.secret_id)
        if req.revision != REVISION_LATEST_ENABLED:
            raise RuntimeError("unsupported revision selector")
        enabled = [v for v in self.versions[req.secret_id] if v.enabled]
        if not enabled:
            raise RuntimeError("no enabled version")
        chosen = max(enabled, key=lambda v: v.revision)
        return SecretVersionRecord(
            secret_id=req.secret_id,
            revision=chosen.revision,
            data=chosen.data,
            type=record.type,
            status="enabled",
        )

    def create_secret(self, req: CreateSecretInput) -> SecretRecord:
        self.calls.append(("create_secret", req))
        if self.create_secret_error:
            raise self.create_secret_error
        return self.add_secret(req.name, path=req.path or "/", type=req.type,
                               project_id=req.project_id or "proj")

    def create_secret_version(self, req: CreateSecretVersionInput) -> SecretVersionRecord:
        self.calls.append(("create_version", req))
        if self.create_version_error:
            raise self.create_version_error
        self._find(req.secret_id)
        versions = self.versions[req.secret_id]
        if req.disable_previous:
            for version in reversed(versions):
                if version.enabled:
                    version.enabled = False
                    break
        revision = len(versions) + 1
        versions.append(FakeVersion(revision=revision, enabled=True, data=bytes(req.data),
                                    description=req.description))
        return SecretVersionRecord(secret_id=req.secret_id, revision=revision, status="enabled")

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_api():
    return FakeSecretAPI()
