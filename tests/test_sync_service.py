"""Tests for the list/pull/push workflows."""
import re
import stat
from datetime import datetime, timezone

import pytest

from dev_vault.secrets.domains.errors import (
    AmbiguousSecretError,
    ConfigError,
    DestinationExistsError,
    DotenvParseError,
    FilesystemError,
    PayloadFormatError,
    SecretAPIError,
    SecretNotFoundError,
    SyncError,
    TypeMismatchError,
    UsageError,
)
from dev_vault.secrets.domains.manifest import LoadedManifest
from dev_vault.secrets.domains.models import ListQuery, MappingEntry, MappingTarget, PushOptions
from dev_vault.secrets.workflows.sync_service import ServiceConfig, SyncService


FIXED_NOW = datetime.fromtimestamp(123, tz=timezone.utc)


def make_service(root, api, mapping=None, hostname=lambda: "host"):
    return SyncService(
        ServiceConfig(root=str(root), region="global", project_id="proj", mapping=mapping or {}),
        api,
        now=lambda: FIXED_NOW,
        hostname=hostname,
    )


def target(name, **entry):
    entry.setdefault("file", f"{name}.bin")
    return MappingTarget(name=name, entry=MappingEntry(**entry))


class TestConstruction:
    def test_defaults_for_clock_and_hostname(self, fake_api, tmp_path):
        service = SyncService(ServiceConfig(root=str(tmp_path)), fake_api)
        assert service.now().tzinfo is not None
        assert isinstance(service.hostname(), str)

    def test_from_manifest(self, fake_api, tmp_path):
        loaded = LoadedManifest(
            path=str(tmp_path / ".dev-vault.json"),
            root=str(tmp_path),
            project_id="p1",
            region="europe-west1",
            mapping={"a-dev": MappingEntry(file="a")},
        )
        service = SyncService.from_manifest(loaded, fake_api, now=lambda: FIXED_NOW)
        assert service.config.root == str(tmp_path)
        assert service.scope.project_id == "p1"
        assert service.scope.region == "europe-west1"
        assert service.now() is FIXED_NOW

    def test_from_manifest_project_override(self, fake_api, tmp_path):
        """An explicit project id wins over the manifest project_id."""
        loaded = LoadedManifest(path="m", root=str(tmp_path), project_id="p1", region="global", mapping={})
        service = SyncService.from_manifest(loaded, fake_api, project_id="env-project")
        assert service.scope.project_id == "env-project"

    def test_select_targets_uses_config_mapping(self, fake_api, tmp_path):
        service = make_service(tmp_path, fake_api, {"a-dev": MappingEntry(file="a", mode="push")})
        assert [t.name for t in service.select_targets(True, [], "push")] == ["a-dev"]
        with pytest.raises(UsageError):
            service.select_targets(False, ["a-dev"], "pull")


class TestList:
    """Test suite for SyncService.list."""

    @pytest.fixture
    def populated(self, fake_api):
        fake_api.add_secret("zzz-dev", path="/a", type="opaque", id="id-z")
        fake_api.add_secret("aaa-dev", path="/a", type="key_value", id="id-a")
        fake_api.add_secret("plain-prod", path="/a", type="opaque", id="id-p")
        fake_api.add_secret("mid-dev", path="/b", type="opaque", id="id-m")
        return fake_api

    def test_lists_only_dev_secrets_sorted(self, populated, tmp_path):
        records = make_service(tmp_path, populated).list(ListQuery())
        assert [r.name for r in records] == ["aaa-dev", "mid-dev", "zzz-dev"]

    def test_combined_filters(self, populated, tmp_path):
        """Path, substring, regex and type filters are ANDed."""
        records = make_service(tmp_path, populated).list(ListQuery(
            name_contains=["a"],
            name_regex=re.compile(r"^a.*-dev$"),
            path="/a",
            type="key_value",
        ))
        assert [(r.name, r.id, r.type) for r in records] == [("aaa-dev", "id-a", "key_value")]

    def test_type_filter_sweeps_one_type(self, populated, tmp_path):
        make_service(tmp_path, populated).list(ListQuery(type="opaque"))
        assert [req.type for name, req in populated.calls] == ["opaque"]

    def test_substring_filters_all_must_match(self, populated, tmp_path):
        service = make_service(tmp_path, populated)
        assert service.list(ListQuery(name_contains=["nope"])) == []
        assert [r.name for r in service.list(ListQuery(name_contains=["z", "dev"]))] == ["zzz-dev"]

    def test_regex_is_searched(self, populated, tmp_path):
        query = ListQuery(name_regex=re.compile(r"zz-"))
        assert [r.name for r in make_service(tmp_path, populated).list(query)] == ["zzz-dev"]

    def test_invalid_type_is_usage_error(self, populated, tmp_path):
        with pytest.raises(UsageError):
            make_service(tmp_path, populated).list(ListQuery(type="bogus"))
        assert populated.calls == []

    def test_store_failure(self, fake_api, tmp_path):
        fake_api.list_error = RuntimeError("boom")
        with pytest.raises(SecretAPIError) as exc_info:
            make_service(tmp_path, fake_api).list(ListQuery())
        assert "boom" in str(exc_info.value)

    def test_never_reads_payloads(self, populated, tmp_path):
        make_service(tmp_path, populated).list(ListQuery())
        assert set(populated.call_names()) == {"list"}


class TestPull:
    """Test suite for SyncService.pull."""

    def test_end_to_end_raw(self, fake_api, tmp_path):
        """A raw pull writes the payload with mode 0600 and reports the revision."""
        secret = fake_api.add_secret("a-dev", path="/")
        fake_api.add_enabled_version(secret.id, b"hello")
        mapping = {"a-dev": MappingEntry(file="a.bin", format="raw", mode="both")}
        service = make_service(tmp_path, fake_api, mapping)

        results = service.pull(service.select_targets(False, ["a-dev"], "pull"), overwrite=False)

        out = tmp_path / "a.bin"
        assert out.read_bytes() == b"hello"
        assert stat.S_IMODE(out.stat().st_mode) == 0o600
        assert [(r.name, r.revision, r.file) for r in results] == [("a-dev", 1, "a.bin")]

    def test_pulls_latest_enabled_version(self, fake_api, tmp_path):
        secret = fake_api.add_secret("a-dev")
        fake_api.add_enabled_version(secret.id, b"v1")
        fake_api.add_enabled_version(secret.id, b"v2")

        results = make_service(tmp_path, fake_api).pull([target("a-dev")])

        assert (tmp_path / "a-dev.bin").read_bytes() == b"v2"
        assert results[0].revision == 2

    def test_dotenv_format(self, fake_api, tmp_path):
        secret = fake_api.add_secret("env-dev")
        fake_api.add_enabled_version(secret.id, b'{"B":"x y","A":"1"}')

        make_service(tmp_path, fake_api).pull([target("env-dev", file=".env", format="dotenv")])

        assert (tmp_path / ".env").read_text() == 'A="1"\nB="x y"\n'

    def test_dotenv_conversion_error(self, fake_api, tmp_path):
        secret = fake_api.add_secret("env-dev")
        fake_api.add_enabled_version(secret.id, b"not-json")

        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).pull([target("env-dev", file=".env", format="dotenv")])

        assert str(exc_info.value).startswith("format dotenv env-dev:")
        assert isinstance(exc_info.value.cause, PayloadFormatError)
        assert not (tmp_path / ".env").exists()

    def test_path_escaping_root_is_rejected(self, fake_api, tmp_path):
        fake_api.add_secret("a-dev")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).pull([target("a-dev", file="../outside.bin")])
        assert isinstance(exc_info.value.cause, ConfigError)
        assert "escapes project root" in str(exc_info.value)

    def test_missing_secret(self, fake_api, tmp_path):
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).pull([target("missing-dev")])
        assert isinstance(exc_info.value.cause, SecretNotFoundError)
        assert "resolve missing-dev" in str(exc_info.value)

    def test_ambiguous_secret(self, fake_api, tmp_path):
        fake_api.add_secret("dup-dev", id="b")
        fake_api.add_secret("dup-dev", id="a", type="key_value")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).pull([target("dup-dev")])
        assert isinstance(exc_info.value.cause, AmbiguousSecretError)
        assert "a,b" in str(exc_info.value)

    def test_type_mismatch(self, fake_api, tmp_path):
        """A declared type that differs from the stored one is fatal."""
        secret = fake_api.add_secret("a-dev", type="opaque")
        fake_api.add_enabled_version(secret.id, b"data")

        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).pull([target("a-dev", type="key_value")])

        assert isinstance(exc_info.value.cause, TypeMismatchError)
        assert "expected key_value got opaque" in str(exc_info.value)
        assert "access" not in fake_api.call_names()

    def test_access_error(self, fake_api, tmp_path):
        fake_api.add_secret("a-dev")
        fake_api.access_error = RuntimeError("access boom")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).pull([target("a-dev")])
        assert isinstance(exc_info.value.cause, SecretAPIError)
        assert str(exc_info.value).startswith("access a-dev:")

    def test_existing_file_requires_overwrite(self, fake_api, tmp_path):
        secret = fake_api.add_secret("a-dev")
        fake_api.add_enabled_version(secret.id, b"DATA")
        existing = tmp_path / "a-dev.bin"
        existing.write_bytes(b"x")
        service = make_service(tmp_path, fake_api)

        with pytest.raises(SyncError) as exc_info:
            service.pull([target("a-dev")], overwrite=False)
        assert isinstance(exc_info.value.cause, DestinationExistsError)
        assert existing.read_bytes() == b"x"

        service.pull([target("a-dev")], overwrite=True)
        assert existing.read_bytes() == b"DATA"

    def test_first_failure_aborts_batch(self, fake_api, tmp_path):
        """Earlier targets keep their files; later targets are not attempted."""
        first = fake_api.add_secret("a-dev")
        fake_api.add_enabled_version(first.id, b"A")
        last = fake_api.add_secret("c-dev")
        fake_api.add_enabled_version(last.id, b"C")

        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).pull([target("a-dev"), target("b-dev"), target("c-dev")])

        assert exc_info.value.name == "b-dev"
        assert (tmp_path / "a-dev.bin").read_bytes() == b"A"
        assert not (tmp_path / "c-dev.bin").exists()

    def test_index_built_once_per_invocation(self, fake_api, tmp_path):
        for name in ("a-dev", "b-dev"):
            fake_api.add_enabled_version(fake_api.add_secret(name).id, b"x")

        make_service(tmp_path, fake_api).pull([target("a-dev"), target("b-dev")])

        assert fake_api.call_names().count("list") == 6
        assert fake_api.call_names().count("access") == 2

    def test_non_dev_target_refused_before_store_calls(self, fake_api, tmp_path):
        with pytest.raises(UsageError):
            make_service(tmp_path, fake_api).pull([target("prod-secret")])
        assert fake_api.calls == []

    def test_payload_never_in_errors(self, fake_api, tmp_path):
        secret = fake_api.add_secret("a-dev")
        fake_api.add_enabled_version(secret.id, b'["TOP-SECRET-VALUE"]')
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).pull([target("a-dev", format="dotenv")])
        assert "TOP-SECRET-VALUE" not in str(exc_info.value)


class TestPush:
    """Test suite for SyncService.push."""

    def test_end_to_end_dotenv(self, fake_api, tmp_path):
        """A dotenv file is uploaded as a flat JSON object."""
        secret = fake_api.add_secret("env-dev")
        (tmp_path / ".env").write_text('A=1\nB="x"\n')

        results = make_service(tmp_path, fake_api).push(
            [target("env-dev", file=".env", format="dotenv")]
        )

        assert [(r.name, r.revision) for r in results] == [("env-dev", 1)]
        assert fake_api.versions[secret.id][0].data == b'{"A":"1","B":"x"}'

    def test_raw_payload_and_default_description(self, fake_api, tmp_path):
        secret = fake_api.add_secret("a-dev")
        (tmp_path / "a-dev.bin").write_bytes(b"\x00raw\xff")

        make_service(tmp_path, fake_api).push([target("a-dev")])

        version = fake_api.versions[secret.id][0]
        assert version.data == b"\x00raw\xff"
        assert version.description == "dev-vault push 1970-01-01T00:02:03Z host"

    def test_explicit_description_and_disable_previous(self, fake_api, tmp_path):
        secret = fake_api.add_secret("a-dev")
        fake_api.add_enabled_version(secret.id, b"old")
        (tmp_path / "a-dev.bin").write_bytes(b"new")

        results = make_service(tmp_path, fake_api).push(
            [target("a-dev")], PushOptions(description="rotate", disable_previous=True)
        )

        versions = fake_api.versions[secret.id]
        assert results[0].revision == 2
        assert versions[1].description == "rotate"
        assert [v.enabled for v in versions] == [False, True]

    def test_missing_secret_without_create_missing(self, fake_api, tmp_path):
        (tmp_path / "new-dev.bin").write_bytes(b"payload")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).push([target("new-dev", type="opaque")])
        assert isinstance(exc_info.value.cause, SecretNotFoundError)
        assert "create_secret" not in fake_api.call_names()

    def test_create_missing(self, fake_api, tmp_path):
        """With create_missing and a declared type the secret is created, then versioned."""
        (tmp_path / "new-dev.bin").write_bytes(b"payload")

        results = make_service(tmp_path, fake_api).push(
            [target("new-dev", type="opaque", path="/svc")], PushOptions(create_missing=True)
        )

        assert fake_api.call_names()[-2:] == ["create_secret", "create_version"]
        created = fake_api.secrets[0]
        assert (created.name, created.path, created.type) == ("new-dev", "/svc", "opaque")
        assert fake_api.versions[created.id][0].data == b"payload"
        assert results[0].revision == 1

    def test_create_missing_requires_type(self, fake_api, tmp_path):
        (tmp_path / "new-dev.bin").write_bytes(b"payload")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).push([target("new-dev")], PushOptions(create_missing=True))
        assert "create-missing requires mapping.type" in str(exc_info.value)

    def test_type_mismatch_even_with_create_missing(self, fake_api, tmp_path):
        fake_api.add_secret("a-dev", type="certificate")
        (tmp_path / "a-dev.bin").write_bytes(b"payload")

        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).push(
                [target("a-dev", type="opaque")], PushOptions(create_missing=True)
            )

        assert isinstance(exc_info.value.cause, TypeMismatchError)
        assert "create_version" not in fake_api.call_names()

    def test_missing_local_file(self, fake_api, tmp_path):
        fake_api.add_secret("a-dev")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).push([target("a-dev")])
        assert isinstance(exc_info.value.cause, FilesystemError)
        assert str(exc_info.value).startswith("push a-dev: read ")

    def test_invalid_dotenv(self, fake_api, tmp_path):
        fake_api.add_secret("env-dev")
        (tmp_path / ".env").write_text("A=1\nSECRETVALUE\n")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).push([target("env-dev", file=".env", format="dotenv")])
        assert isinstance(exc_info.value.cause, DotenvParseError)
        assert "line 2" in str(exc_info.value)
        assert "SECRETVALUE" not in str(exc_info.value)

    def test_create_version_error(self, fake_api, tmp_path):
        fake_api.add_secret("a-dev")
        fake_api.create_version_error = RuntimeError("quota")
        (tmp_path / "a-dev.bin").write_bytes(b"payload")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).push([target("a-dev")])
        assert isinstance(exc_info.value.cause, SecretAPIError)
        assert "create secret version: quota" in str(exc_info.value)

    def test_create_secret_error(self, fake_api, tmp_path):
        fake_api.create_secret_error = RuntimeError("denied")
        (tmp_path / "a-dev.bin").write_bytes(b"payload")
        with pytest.raises(SyncError) as exc_info:
            make_service(tmp_path, fake_api).push(
                [target("a-dev", type="opaque")], PushOptions(create_missing=True)
            )
        assert "create secret: denied" in str(exc_info.value)


class TestPushDescription:
    """Test suite for default push descriptions."""

    def test_explicit_wins(self, fake_api, tmp_path):
        assert make_service(tmp_path, fake_api).push_description("mine") == "mine"

    def test_unknown_host_when_hostname_fails(self, fake_api, tmp_path):
        def broken():
            raise OSError("no hostname")

        service = make_service(tmp_path, fake_api, hostname=broken)
        assert service.push_description() == "dev-vault push 1970-01-01T00:02:03Z unknown-host"

    def test_unknown_host_when_hostname_empty(self, fake_api, tmp_path):
        service = make_service(tmp_path, fake_api, hostname=lambda: "")
        assert service.push_description().endswith(" unknown-host")
