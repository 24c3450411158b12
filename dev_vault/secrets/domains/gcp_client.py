"""GCP Secret Manager implementation of the SecretAPI capability.

dev-vault concepts are stored on the GCP secret itself:
- name: the GCP secret id
- type: the ``dev-vault-type`` label (filterable server-side)
- path: the ``dev-vault-path`` annotation (label values cannot hold '/')
"""
import logging
import os
from typing import Dict, List, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import secretmanager

from .errors import SecretAPIError
from .models import (
    DEFAULT_PATH,
    REVISION_LATEST_ENABLED,
    TYPE_OPAQUE,
    AccessSecretVersionInput,
    CreateSecretInput,
    CreateSecretVersionInput,
    ListSecretsInput,
    SecretRecord,
    SecretVersionRecord,
)

logger = logging.getLogger(__name__)

TYPE_LABEL = "dev-vault-type"
PATH_ANNOTATION = "dev-vault-path"
GLOBAL_REGION = "global"


def use_service_account(service_account_path: Optional[str]) -> None:
    """Point Google client libraries at a service account file."""
    if service_account_path:
        os.environ['GOOGLE_APPLICATION_CREDENTIALS'] = service_account_path
        logger.info(f"Set GOOGLE_APPLICATION_CREDENTIALS: {service_account_path}")


def _is_global(region: str) -> bool:
    return not region or region == GLOBAL_REGION


def parent_for(project_id: str, region: str) -> str:
    if _is_global(region):
        return f"projects/{project_id}"
    return f"projects/{project_id}/locations/{region}"


def _revision_from_name(version_name: str) -> int:
    # projects/<p>/[locations/<l>/]secrets/<id>/versions/<n>
    return int(version_name.rsplit("/", 1)[-1])


def _project_from_name(resource_name: str) -> str:
    parts = resource_name.split("/")
    return parts[1] if len(parts) > 1 and parts[0] == "projects" else ""


class GCPSecretAPI:
    """SecretAPI backed by google-cloud-secret-manager."""

    def __init__(self, client_factory=None):
        self._client_factory = client_factory or self._default_client
        self._clients: Dict[str, secretmanager.SecretManagerServiceClient] = {}

    @staticmethod
    def _default_client(region: str) -> secretmanager.SecretManagerServiceClient:
        if _is_global(region):
            return secretmanager.SecretManagerServiceClient()
        return secretmanager.SecretManagerServiceClient(
            client_options={"api_endpoint": f"secretmanager.{region}.rep.googleapis.com"}
        )

    def client(self, region: str) -> secretmanager.SecretManagerServiceClient:
        """Lazy-initialize one client per region."""
        key = GLOBAL_REGION if _is_global(region) else region
        if key not in self._clients:
            self._clients[key] = self._client_factory(key)
        return self._clients[key]

    def _to_record(self, secret) -> SecretRecord:
        return SecretRecord(
            id=secret.name,
            project_id=_project_from_name(secret.name),
            name=secret.name.rsplit("/", 1)[-1],
            path=dict(secret.annotations).get(PATH_ANNOTATION, DEFAULT_PATH),
            type=dict(secret.labels).get(TYPE_LABEL, TYPE_OPAQUE),
        )

    def _list(self, region: str, request: dict) -> list:
        try:
            # The pager walks every page.
            return list(self.client(region).list_secrets(request=request))
        except gcp_exceptions.GoogleAPICallError as e:
            raise SecretAPIError("list secrets", str(e)) from e

    def list_secrets(self, req: ListSecretsInput) -> List[SecretRecord]:
        parent = parent_for(req.project_id, req.region)
        if not req.type:
            filters = [""]
        elif req.type == TYPE_OPAQUE:
            # Secrets created outside dev-vault carry no type label and count as opaque.
            filters = [f"labels.{TYPE_LABEL}={req.type}", f"NOT labels.{TYPE_LABEL}:*"]
        else:
            filters = [f"labels.{TYPE_LABEL}={req.type}"]

        records = []
        for filter_ in filters:
            request = {"parent": parent}
            if filter_:
                request["filter"] = filter_
            for secret in self._list(req.region, request):
                record = self._to_record(secret)
                if req.name and record.name != req.name:
                    continue
                if req.path and record.path != req.path:
                    continue
                if req.type and record.type != req.type:
                    continue
                records.append(record)
        return records

    def access_secret_version(self, req: AccessSecretVersionInput) -> SecretVersionRecord:
        client = self.client(req.region)
        try:
            secret = client.get_secret(request={"name": req.secret_id})
            if req.revision == REVISION_LATEST_ENABLED:
                # The "latest" alias also points at disabled versions.
                name = self._latest_enabled_version(client, req.secret_id)
                if name is None:
                    raise SecretAPIError("access secret version", f"no enabled version of {req.secret_id}")
            else:
                name = f"{req.secret_id}/versions/{req.revision}"
            response = client.access_secret_version(request={"name": name})
        except gcp_exceptions.GoogleAPICallError as e:
            raise SecretAPIError("access secret version", str(e)) from e

        return SecretVersionRecord(
            secret_id=req.secret_id,
            revision=_revision_from_name(response.name),
            data=response.payload.data,
            type=dict(secret.labels).get(TYPE_LABEL, TYPE_OPAQUE),
            status="enabled",
        )

    def create_secret(self, req: CreateSecretInput) -> SecretRecord:
        secret = {
            "labels": {TYPE_LABEL: req.type},
            "annotations": {PATH_ANNOTATION: req.path or DEFAULT_PATH},
        }
        if _is_global(req.region):
            secret["replication"] = {"automatic": {}}
        try:
            created = self.client(req.region).create_secret(request={
                "parent": parent_for(req.project_id, req.region),
                "secret_id": req.name,
                "secret": secret,
            })
        except gcp_exceptions.GoogleAPICallError as e:
            raise SecretAPIError("create secret", str(e)) from e

        logger.info(f"Created secret {req.name} (type={req.type}, path={req.path or DEFAULT_PATH})")
        return self._to_record(created)

    def _latest_enabled_version(self, client, secret_id: str) -> Optional[str]:
        versions = client.list_secret_versions(request={"parent": secret_id, "filter": "state:ENABLED"})
        names = [v.name for v in versions]
        if not names:
            return None
        return max(names, key=_revision_from_name)

    def create_secret_version(self, req: CreateSecretVersionInput) -> SecretVersionRecord:
        client = self.client(req.region)
        try:
            previous = None
            if req.disable_previous:
                previous = self._latest_enabled_version(client, req.secret_id)

            version = client.add_secret_version(request={
                "parent": req.secret_id,
                "payload": {"data": req.data},
            })
        except gcp_exceptions.GoogleAPICallError as e:
            raise SecretAPIError("create secret version", str(e)) from e

        revision = _revision_from_name(version.name)
        if previous:
            # The new version already exists; a disable failure is only reported.
            try:
                client.disable_secret_version(request={"name": previous})
                logger.info(f"Disabled previous version {_revision_from_name(previous)} of {req.secret_id}")
            except gcp_exceptions.GoogleAPICallError as e:
                logger.warning(
                    f"Created version {revision} of {req.secret_id} but failed to disable "
                    f"previous version {_revision_from_name(previous)}: {e}"
                )
        # GCP versions have no description field; keep it in the log trail.
        if req.description:
            logger.info(f"Created version {revision} of {req.secret_id}: {req.description}")
        return SecretVersionRecord(
            secret_id=req.secret_id,
            revision=revision,
            status=version.state.name.lower(),
        )
