"""
Process-wide runtime: everything the operator handlers and the HTTP app share.
"""
import threading
from dataclasses import dataclass, field

from mirrors.config import Settings, settings as default_settings
from mirrors.context import MirrorBackend
from mirrors.pool import SyncPool
from mirrors.reconciler import MirrorReconciler
from mirrors.registry import NamespaceRegistry, WakeBus
from mirrors.services.events import EventRecorder
from mirrors.services.kubernetes_service import KubeClient


@dataclass
class Runtime:
    backend: MirrorBackend
    reconciler: MirrorReconciler
    bus: WakeBus = field(default_factory=WakeBus)
    stop: threading.Event = field(default_factory=threading.Event)

    @property
    def registry(self) -> NamespaceRegistry:
        return self.backend.registry

    def shutdown(self):
        self.stop.set()
        self.backend.pool.shutdown()


def build_runtime(cfg: Settings = default_settings, kube=None) -> Runtime:
    backend = MirrorBackend(
        kube=kube or KubeClient(cfg=cfg),
        registry=NamespaceRegistry(),
        pool=SyncPool(cfg.WORKER_POOL_SIZE),
        recorder=EventRecorder(cfg.REDIS_URL),
        settings=cfg,
    )
    return Runtime(backend=backend, reconciler=MirrorReconciler(backend))
