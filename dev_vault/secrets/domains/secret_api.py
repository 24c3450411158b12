"""Narrow capability interface to a secret store.

The sync engine only depends on this protocol; vendor SDK types stay inside
the concrete adapters (see gcp_client.GCPSecretAPI).
"""
from dataclasses import replace
from typing import List, Protocol

from .models import (
    AccessSecretVersionInput,
    CreateSecretInput,
    CreateSecretVersionInput,
    ListSecretsInput,
    ProjectScope,
    SecretRecord,
    SecretVersionRecord,
)


class SecretAPI(Protocol):
    """Store operations used by dev-vault. Implementations raise SecretAPIError."""

    def list_secrets(self, req: ListSecretsInput) -> List[SecretRecord]:
        ...

    def access_secret_version(self, req: AccessSecretVersionInput) -> SecretVersionRecord:
        ...

    def create_secret(self, req: CreateSecretInput) -> SecretRecord:
        ...

    def create_secret_version(self, req: CreateSecretVersionInput) -> SecretVersionRecord:
        ...


class ScopedSecretAPI:
    """Fills in region and project on requests that leave them empty."""

    def __init__(self, base: SecretAPI, scope: ProjectScope):
        self.base = base
        self.scope = scope

    def list_secrets(self, req: ListSecretsInput) -> List[SecretRecord]:
        return self.base.list_secrets(replace(
            req,
            region=req.region or self.scope.region,
            project_id=req.project_id or self.scope.project_id,
        ))

    def access_secret_version(self, req: AccessSecretVersionInput) -> SecretVersionRecord:
        return self.base.access_secret_version(replace(req, region=req.region or self.scope.region))

    def create_secret(self, req: CreateSecretInput) -> SecretRecord:
        return self.base.create_secret(replace(
            req,
            region=req.region or self.scope.region,
            project_id=req.project_id or self.scope.project_id,
        ))

    def create_secret_version(self, req: CreateSecretVersionInput) -> SecretVersionRecord:
        return self.base.create_secret_version(replace(req, region=req.region or self.scope.region))
