"""In-memory (name, path) index over a full listing of the secret store."""
import logging
from typing import Dict, Iterable, List, Optional

from .errors import AmbiguousSecretError, DevVaultError, SecretAPIError, SecretNotFoundError
from .models import SECRET_TYPES, ListSecretsInput, ProjectScope, SecretRecord
from .secret_api import SecretAPI

logger = logging.getLogger(__name__)


def _key(name: str, path: str) -> str:
    # NUL cannot appear in a secret name or path.
    return f"{name}\0{path}"


def list_secrets_by_types(api: SecretAPI, base: ListSecretsInput,
                          types: Iterable[str] = SECRET_TYPES) -> List[SecretRecord]:
    """
    List secrets once per type and flatten the results.

    The store filter requires a type per call, so a full listing is a sweep
    over every supported type. Any failing call aborts the sweep.

    Raises:
        SecretAPIError: If any list call fails
    """
    types = tuple(types)
    records: List[SecretRecord] = []
    for secret_type in types:
        req = ListSecretsInput(
            region=base.region,
            project_id=base.project_id,
            name=base.name,
            path=base.path,
            type=secret_type,
        )
        try:
            records.extend(api.list_secrets(req))
        except DevVaultError:
            raise
        except Exception as e:
            raise SecretAPIError("list secrets", f"type={secret_type}: {e}") from e
    logger.debug(f"Listed {len(records)} secrets across {len(types)} types")
    return records


class SecretIndex:
    """Secrets keyed by (name, path). Built fresh for every invocation."""

    def __init__(self, records: Iterable[SecretRecord] = ()):
        self._by_key: Dict[str, List[SecretRecord]] = {}
        for record in records:
            self._by_key.setdefault(_key(record.name, record.path), []).append(record)

    @classmethod
    def build(cls, api: SecretAPI, scope: ProjectScope,
              types: Iterable[str] = SECRET_TYPES, path: Optional[str] = None) -> "SecretIndex":
        """Sweep the store for the given scope and index every record."""
        base = ListSecretsInput(region=scope.region, project_id=scope.project_id, path=path or "")
        return cls(list_secrets_by_types(api, base, types))

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_key.values())

    def records(self) -> List[SecretRecord]:
        return [record for group in self._by_key.values() for record in group]

    def resolve(self, name: str, path: str) -> SecretRecord:
        """
        Resolve exactly one secret for (name, path).

        Raises:
            SecretNotFoundError: If nothing matches
            AmbiguousSecretError: If more than one secret matches; never
                resolved silently
        """
        matches = self._by_key.get(_key(name, path), [])
        if not matches:
            raise SecretNotFoundError(name, path)
        if len(matches) > 1:
            raise AmbiguousSecretError(name, path, [m.id for m in matches])
        return matches[0]

    def add(self, record: SecretRecord) -> None:
        """Index a record created during the current invocation."""
        self._by_key.setdefault(_key(record.name, record.path), []).append(record)
