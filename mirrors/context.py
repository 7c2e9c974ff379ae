"""
Shared collaborators handed to every reconcile pass.
"""
from dataclasses import dataclass
from typing import Optional

from mirrors.config import Settings, settings as default_settings
from mirrors.models import MirrorStatus, SecretMirror
from mirrors.pool import SyncPool
from mirrors.registry import NamespaceRegistry
from mirrors.services.events import EventRecorder
from mirrors.services.vault_service import VaultClient, VaultFactory


@dataclass
class MirrorBackend:
    """Process-wide dependencies, built once at operator startup."""
    kube: object
    registry: NamespaceRegistry
    pool: SyncPool
    recorder: EventRecorder
    vault_factory: Optional[VaultFactory] = None
    settings: Settings = default_settings

    def new_vault_session(self, addr: str) -> VaultClient:
        if self.vault_factory is not None:
            return self.vault_factory(addr)
        return VaultClient(addr, timeout=self.settings.VAULT_TIMEOUT)


@dataclass
class MirrorContext:
    """One mirror as seen by one pass; `original_status` detects status changes."""
    backend: MirrorBackend
    mirror: SecretMirror
    original_status: Optional[MirrorStatus] = None
    # Set once the source has been asked for data in this pass
    retrieved: bool = False

    def __post_init__(self):
        if self.original_status is None:
            self.original_status = self.mirror.status.model_copy(deep=True)

    @property
    def kube(self):
        return self.backend.kube

    @property
    def settings(self) -> Settings:
        return self.backend.settings

    def annotation(self, name: str) -> str:
        return f"{self.settings.ANNOTATION_PREFIX}/{name}"

    def emit(self, event_type: str, reason: str, message: str):
        self.backend.recorder.emit(self.mirror, event_type, reason, message)
