"""
Tests for the destination adapters.

These tests verify:
- namespace fan-out creates stamped copies and is idempotent
- copies owned by someone else are never touched
- one failing namespace does not stop the others
- cleanup honours deletePolicy and ownership
- the Vault destination diffs before writing
"""

import base64
import re

import pytest
from hvac import exceptions as vault_exc
from prometheus_client import REGISTRY

from conftest import make_context, make_mirror_body
from mirrors.backends import make_destination
from mirrors.backends.dest_namespaces import NamespacesDestination
from mirrors.backends.dest_vault import VaultSecretDestination
from mirrors.payload import SecretPayload

OWNER = "mirrors.kts.studio/owned-by"


def namespaces_body(name="demo", patterns=(r"mirror-ns-\d+",), delete_policy="delete", source=None):
    return make_mirror_body(name=name, spec={
        "source": source or {"type": "secret", "name": "demo-secret"},
        "destination": {"type": "namespaces", "namespaces": list(patterns)},
        "deletePolicy": delete_policy,
    })


def source_payload(**data):
    return SecretPayload(
        name="demo-secret", namespace="default", labels={"app": "demo"},
        data={k: v.encode() for k, v in (data or {"hello": "there"}).items()},
        resource_version="5",
    )


@pytest.fixture
def live(registry):
    for ns in ("default", "mirror-ns-1", "mirror-ns-2", "kube-system"):
        registry.add_namespace(ns)
    return registry


def synced(backend, body, payload):
    ctx = make_context(backend, body)
    dest = make_destination(ctx)
    dest.setup()
    return ctx, dest, dest.sync(payload)


class TestNamespacesSync:
    def test_dispatch(self, backend):
        assert isinstance(make_destination(make_context(backend, namespaces_body())), NamespacesDestination)

    def test_creates_copies(self, backend, kube, live):
        _, _, signal = synced(backend, namespaces_body(), source_payload(hello="there", general="kenobi"))
        assert signal is None
        assert sorted(kube.created) == ["mirror-ns-1/demo-secret", "mirror-ns-2/demo-secret"]
        copy = kube.secrets[("mirror-ns-1", "demo-secret")]
        assert copy.data == {"hello": b"there", "general": b"kenobi"}
        assert copy.labels == {"app": "demo"}
        assert copy.annotations[OWNER] == "default/demo"
        assert copy.annotations["mirrors.kts.studio/parent-version"] == "5"
        assert copy.annotations["mirrors.kts.studio/source-type"] == "secret"
        assert "mirrors.kts.studio/last-sync-at" in copy.annotations
        assert REGISTRY.get_sample_value(
            "mirrors_ns_current_count", {"mirror": "default/demo", "source_type": "secret"}
        ) == 2

    def test_second_sync_writes_nothing(self, backend, kube, live):
        synced(backend, namespaces_body(), source_payload())
        writes = kube.writes
        _, _, signal = synced(backend, namespaces_body(), source_payload())
        assert signal is None
        assert kube.writes == writes

    def test_changed_source_replaces(self, backend, kube, live):
        synced(backend, namespaces_body(), source_payload(hello="there"))
        synced(backend, namespaces_body(), source_payload(hello="world"))
        assert sorted(kube.replaced) == ["mirror-ns-1/demo-secret", "mirror-ns-2/demo-secret"]
        assert kube.secrets[("mirror-ns-2", "demo-secret")].data == {"hello": b"world"}

    def test_foreign_copy_untouched(self, backend, kube, live):
        kube.add_secret("mirror-ns-1", "demo-secret", {"mine": b"1"}, annotations={OWNER: "other/mirror"})
        kube.add_secret("mirror-ns-2", "demo-secret", {"mine": b"2"})
        _, _, signal = synced(backend, namespaces_body(), source_payload())
        assert signal is None
        assert kube.writes == 0
        assert kube.secrets[("mirror-ns-1", "demo-secret")].data == {"mine": b"1"}
        assert kube.secrets[("mirror-ns-2", "demo-secret")].data == {"mine": b"2"}

    def test_partial_failure(self, backend, kube, live, recorder):
        live.add_namespace("mirror-ns-3")
        kube.fail_namespaces.add("mirror-ns-2")
        _, _, signal = synced(backend, namespaces_body(), source_payload())
        assert sorted(kube.created) == ["mirror-ns-1/demo-secret", "mirror-ns-3/demo-secret"]
        assert signal.phase == "Error"
        assert signal.event_type == "Warning"
        assert signal.event_reason == "SyncError"
        assert signal.message.startswith("unable to sync some objects: ")
        assert "mirror-ns-2" in signal.message

    def test_no_matching_namespaces(self, backend, kube, live):
        _, _, signal = synced(backend, namespaces_body(patterns=["^nothing$"]), source_payload())
        assert signal is None
        assert kube.writes == 0

    def test_invalid_pattern(self, backend, live):
        ctx = make_context(backend, namespaces_body(patterns=["("]))
        with pytest.raises(re.error):
            make_destination(ctx).setup()

    def test_vault_source_annotations(self, backend, kube, live):
        body = namespaces_body(source={"type": "vault", "name": "dyn", "vault": {"path": "db/creds/app"}})
        body["status"] = {"vaultSource": {"leaseID": "L9", "leaseDuration": 300}}
        payload = SecretPayload(name="db/creds/app", namespace="<vault>", data={"u": b"x"})
        synced(backend, body, payload)
        copy = kube.secrets[("mirror-ns-1", "dyn")]
        assert copy.annotations["mirrors.kts.studio/vault-path"] == "db/creds/app"
        assert copy.annotations["mirrors.kts.studio/vault-lease-id"] == "L9"
        assert copy.annotations["mirrors.kts.studio/vault-lease-duration"] == "300"
        assert "mirrors.kts.studio/parent-version" not in copy.annotations


class TestNamespacesCleanup:
    def test_delete_policy_removes_owned_copies(self, backend, kube, live):
        synced(backend, namespaces_body(), source_payload())
        kube.add_secret("kube-system", "demo-secret", {"x": b"1"})
        ctx = make_context(backend, namespaces_body())
        make_destination(ctx).cleanup()
        assert sorted(kube.deleted) == ["mirror-ns-1/demo-secret", "mirror-ns-2/demo-secret"]
        assert ("kube-system", "demo-secret") in kube.secrets
        assert not live.is_registered(ctx.mirror.key)

    def test_delete_skips_foreign_copies(self, backend, kube, live):
        kube.add_secret("mirror-ns-1", "demo-secret", {"x": b"1"}, annotations={OWNER: "other/mirror"})
        make_destination(make_context(backend, namespaces_body())).cleanup()
        assert kube.deleted == []

    def test_retain_policy_keeps_copies(self, backend, kube, live):
        synced(backend, namespaces_body(delete_policy="retain"), source_payload())
        make_destination(make_context(backend, namespaces_body(delete_policy="retain"))).cleanup()
        assert kube.deleted == []
        assert ("mirror-ns-1", "demo-secret") in kube.secrets

    def test_cleanup_after_restart(self, backend, kube, live):
        # Copies exist but this process never registered the mirror
        for ns in ("mirror-ns-1", "mirror-ns-2"):
            kube.add_secret(ns, "demo-secret", {"x": b"1"}, annotations={OWNER: "default/demo"})
        make_destination(make_context(backend, namespaces_body())).cleanup()
        assert sorted(kube.deleted) == ["mirror-ns-1/demo-secret", "mirror-ns-2/demo-secret"]

    def test_cleanup_drops_namespace_gauge(self, backend, kube, live):
        labels = {"mirror": "default/counted", "source_type": "secret"}
        synced(backend, namespaces_body(name="counted"), source_payload())
        assert REGISTRY.get_sample_value("mirrors_ns_current_count", labels) == 2
        make_destination(make_context(backend, namespaces_body(name="counted"))).cleanup()
        assert REGISTRY.get_sample_value("mirrors_ns_current_count", labels) is None

    def test_cleanup_never_synced_mirror(self, backend, kube, live):
        make_destination(make_context(backend, namespaces_body(name="fresh"))).cleanup()
        assert kube.deleted == []

    def test_cleanup_with_malformed_pattern(self, backend, kube, live):
        ctx = make_context(backend, namespaces_body(patterns=("(",)))
        make_destination(ctx).cleanup()
        assert kube.deleted == []
        assert not live.is_registered(ctx.mirror.key)

    def test_malformed_edit_cleans_previous_copies(self, backend, kube, live):
        synced(backend, namespaces_body(), source_payload())
        make_destination(make_context(backend, namespaces_body(patterns=("(",)))).cleanup()
        assert sorted(kube.deleted) == ["mirror-ns-1/demo-secret", "mirror-ns-2/demo-secret"]

    def test_cleanup_failure_raises(self, backend, kube, live):
        synced(backend, namespaces_body(), source_payload())
        kube.fail_namespaces.add("mirror-ns-1")
        with pytest.raises(RuntimeError):
            make_destination(make_context(backend, namespaces_body())).cleanup()
        assert kube.deleted == ["mirror-ns-2/demo-secret"]


def vault_dest_body():
    return make_mirror_body(spec={
        "destination": {"type": "vault", "vault": {
            "addr": "https://vault.example.com",
            "path": "secret/data/demo",
            "auth": {"token": {"secretRef": {"name": "vault-token"}}},
        }},
    })


class TestVaultDestination:
    @pytest.fixture(autouse=True)
    def token(self, kube):
        kube.add_secret("default", "vault-token", {"token": b"s.abc"})

    def test_dispatch(self, backend):
        assert isinstance(make_destination(make_context(backend, vault_dest_body())), VaultSecretDestination)

    def test_writes_base64(self, backend, vault):
        _, _, signal = synced(backend, vault_dest_body(), source_payload(hello="there"))
        assert signal is None
        assert vault.writes == [("secret/data/demo", {"data": {"hello": base64.b64encode(b"there").decode()}})]

    def test_identical_is_noop(self, backend, vault):
        vault.store["secret/data/demo"] = {"data": {"data": {"hello": base64.b64encode(b"there").decode()}}}
        _, _, signal = synced(backend, vault_dest_body(), source_payload(hello="there"))
        assert signal is None
        assert vault.writes == []

    def test_empty_source(self, backend, vault):
        payload = SecretPayload(name="demo", namespace="default")
        _, _, signal = synced(backend, vault_dest_body(), payload)
        assert signal.message == "no data in source secret"
        assert signal.phase is None
        assert signal.requeue_after == 15
        assert vault.reads == []

    def test_write_failure(self, backend, vault):
        vault.write_error = vault_exc.Forbidden("permission denied")
        _, _, signal = synced(backend, vault_dest_body(), source_payload())
        assert signal.phase == "Error"
        assert signal.event_reason == "VaultError"
        assert signal.message.startswith("Error syncing to vault: ")

    def test_delete_policy_forced_to_retain(self, backend):
        ctx = make_context(backend, vault_dest_body())
        assert ctx.mirror.spec.delete_policy == "retain"
        make_destination(ctx).cleanup()
