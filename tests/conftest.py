"""
Shared fixtures: in-memory stand-ins for the cluster, Vault and the event
recorder, plus a controllable clock.
"""

import copy
import threading
from datetime import datetime, timedelta, timezone

import pytest

from mirrors.config import Settings
from mirrors.context import MirrorBackend, MirrorContext
from mirrors.models import SecretMirror
from mirrors.payload import SecretPayload
from mirrors.pool import SyncPool
from mirrors.reconciler import MirrorReconciler
from mirrors.registry import NamespaceRegistry


class FakeKube:
    """In-memory KubeClient with write counters and per-namespace failure injection."""

    def __init__(self):
        self._lock = threading.Lock()
        self.secrets = {}
        self.mirrors = {}
        self.namespaces = []
        self.created = []
        self.replaced = []
        self.deleted = []
        self.status_patches = []
        self.metadata_patches = []
        self.fail_namespaces = set()
        self.fail_status = False

    # --- helpers ---

    def add_secret(self, namespace, name, data, labels=None, annotations=None, version="1"):
        self.secrets[(namespace, name)] = SecretPayload(
            name=name, namespace=namespace, labels=dict(labels or {}),
            annotations=dict(annotations or {}), data=dict(data), resource_version=version,
        )

    def add_mirror(self, body):
        meta = body.setdefault("metadata", {})
        meta.setdefault("resourceVersion", "1")
        self.mirrors[(meta["namespace"], meta["name"])] = body
        return body

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.replaced) + len(self.deleted)

    def _check(self, namespace):
        if namespace in self.fail_namespaces:
            raise RuntimeError(f"injected failure in {namespace}")

    # --- SecretMirror ---

    def get_mirror(self, namespace, name):
        body = self.mirrors.get((namespace, name))
        return copy.deepcopy(body) if body is not None else None

    def patch_mirror_metadata(self, namespace, name, metadata):
        self.metadata_patches.append(copy.deepcopy(metadata))
        body = self.mirrors[(namespace, name)]
        meta = body["metadata"]
        meta["finalizers"] = list(metadata["finalizers"])
        meta["resourceVersion"] = str(int(meta["resourceVersion"]) + 1)
        return copy.deepcopy(body)

    def patch_mirror_status(self, namespace, name, status):
        if self.fail_status:
            raise RuntimeError("status subresource unavailable")
        self.status_patches.append(copy.deepcopy(status))
        body = self.mirrors[(namespace, name)]
        current = body.setdefault("status", {})
        for k, v in status.items():
            if v is None:
                current.pop(k, None)
            else:
                current[k] = v
        return copy.deepcopy(body)

    # --- Secrets ---

    def read_secret(self, namespace, name):
        self._check(namespace)
        with self._lock:
            secret = self.secrets.get((namespace, name))
            return copy.deepcopy(secret) if secret is not None else None

    def create_secret(self, payload):
        self._check(payload.namespace)
        with self._lock:
            self.secrets[(payload.namespace, payload.name)] = copy.deepcopy(payload)
            self.created.append(str(payload))

    def replace_secret(self, payload):
        self._check(payload.namespace)
        with self._lock:
            self.secrets[(payload.namespace, payload.name)] = copy.deepcopy(payload)
            self.replaced.append(str(payload))

    def delete_secret(self, namespace, name):
        self._check(namespace)
        with self._lock:
            if self.secrets.pop((namespace, name), None) is None:
                return False
            self.deleted.append(f"{namespace}/{name}")
            return True

    def list_namespace_names(self):
        return list(self.namespaces)


class FakeVault:
    """VaultClient stand-in; one instance plays every session."""

    def __init__(self):
        self.addr = ""
        self.token = None
        self.store = {}
        self.reads = []
        self.writes = []
        self.renewals = []
        self.logins = []
        self.login_error = None
        self.write_error = None
        self.renew_error = None
        self.renew_response = None

    def login_approle(self, mount_point, role_id, secret_id):
        self.logins.append((mount_point, role_id, secret_id))
        if self.login_error is not None:
            raise self.login_error
        self.token = "approle-token"

    def read(self, path):
        self.reads.append(path)
        return copy.deepcopy(self.store.get(path))

    def write(self, path, data):
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((path, copy.deepcopy(data)))
        self.store[path] = {"data": copy.deepcopy(data)}

    def renew(self, lease_id, increment):
        self.renewals.append((lease_id, increment))
        if self.renew_error is not None:
            raise self.renew_error
        return self.renew_response or {"lease_id": lease_id, "lease_duration": increment}

    def factory(self, addr):
        self.addr = addr
        return self


class FakeRecorder:
    def __init__(self):
        self.events = []
        self.forgotten = []

    def emit(self, mirror, event_type, reason, message):
        self.events.append((mirror.identity, event_type, reason, message))

    def forget(self, mirror):
        self.forgotten.append(mirror.identity)

    def redis_status(self):
        return "disabled"

    @property
    def reasons(self):
        return [e[2] for e in self.events]


class FakeClock:
    def __init__(self, start=datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def make_mirror_body(name="demo", namespace="default", spec=None, status=None,
                     finalizers=None, deleting=False):
    meta = {"name": name, "namespace": namespace, "resourceVersion": "1"}
    if finalizers is not None:
        meta["finalizers"] = list(finalizers)
    if deleting:
        meta["deletionTimestamp"] = "2024-05-01T12:00:00Z"
    body = {
        "apiVersion": "mirrors.kts.studio/v1alpha2",
        "kind": "SecretMirror",
        "metadata": meta,
        "spec": spec if spec is not None else {},
    }
    if status is not None:
        body["status"] = status
    return body


def make_context(backend, body) -> MirrorContext:
    mirror = SecretMirror.from_body(body)
    mirror.apply_defaults(backend.settings.DEFAULT_POLL_PERIOD_SECONDS)
    return MirrorContext(backend=backend, mirror=mirror)


@pytest.fixture
def kube():
    return FakeKube()


@pytest.fixture
def vault():
    return FakeVault()


@pytest.fixture
def recorder():
    return FakeRecorder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return NamespaceRegistry()


@pytest.fixture
def backend(kube, vault, recorder, registry):
    pool = SyncPool(4)
    yield MirrorBackend(
        kube=kube,
        registry=registry,
        pool=pool,
        recorder=recorder,
        vault_factory=vault.factory,
        settings=Settings(),
    )
    pool.shutdown()


@pytest.fixture
def reconciler(backend, clock):
    return MirrorReconciler(backend, clock=clock)
