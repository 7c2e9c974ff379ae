"""
Pydantic models for the SecretMirror custom resource.

The raw CR body is parsed once per reconcile pass and defaulted in memory
(`apply_defaults`) so the controller never depends on an admission webhook
having run.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field


class SourceType(str, Enum):
    SECRET = "secret"
    VAULT = "vault"


class DestinationType(str, Enum):
    NAMESPACES = "namespaces"
    VAULT = "vault"


class DeletePolicy(str, Enum):
    DELETE = "delete"
    RETAIN = "retain"


class MirrorPhase(str, Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    ERROR = "Error"


class VaultAuthType(str, Enum):
    APPROLE = "appRole"
    TOKEN = "token"


class MirrorKey(NamedTuple):
    """Identity of a SecretMirror; renders as ``namespace/name``."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SecretReference(_Model):
    name: str = ""
    namespace: str = ""


class VaultAppRoleAuth(_Model):
    secret_ref: SecretReference = Field(default_factory=SecretReference, alias="secretRef")
    app_role_path: str = Field("", alias="appRolePath")
    role_id_key: str = Field("", alias="roleIDKey")
    secret_id_key: str = Field("", alias="secretIDKey")


class VaultTokenAuth(_Model):
    secret_ref: SecretReference = Field(default_factory=SecretReference, alias="secretRef")
    token_key: str = Field("", alias="tokenKey")


class VaultAuth(_Model):
    approle: Optional[VaultAppRoleAuth] = None
    token: Optional[VaultTokenAuth] = None

    @property
    def auth_type(self) -> VaultAuthType:
        """approle when a role secret is referenced, token otherwise."""
        if self.approle is not None and self.approle.secret_ref.name:
            return VaultAuthType.APPROLE
        return VaultAuthType.TOKEN


class VaultSpec(_Model):
    addr: str = ""
    path: str = ""
    auth: VaultAuth = Field(default_factory=VaultAuth)

    def apply_defaults(self, namespace: str):
        if self.auth.auth_type == VaultAuthType.APPROLE:
            approle = self.auth.approle
            approle.app_role_path = approle.app_role_path or "approle"
            approle.role_id_key = approle.role_id_key or "role-id"
            approle.secret_id_key = approle.secret_id_key or "secret-id"
            approle.secret_ref.namespace = approle.secret_ref.namespace or namespace
        else:
            if self.auth.token is None:
                self.auth.token = VaultTokenAuth()
            token = self.auth.token
            token.token_key = token.token_key or "token"
            token.secret_ref.namespace = token.secret_ref.namespace or namespace


class MirrorSource(_Model):
    # Kinds stay plain strings so an unknown kind surfaces at adapter
    # selection rather than as a parse failure.
    type: str = ""
    name: str = ""
    vault: Optional[VaultSpec] = None


class MirrorDestination(_Model):
    type: str = ""
    namespaces: List[str] = Field(default_factory=list)
    vault: Optional[VaultSpec] = None


class MirrorSpec(_Model):
    source: MirrorSource = Field(default_factory=MirrorSource)
    destination: MirrorDestination = Field(default_factory=MirrorDestination)
    delete_policy: str = Field("", alias="deletePolicy")
    poll_period_seconds: int = Field(0, alias="pollPeriodSeconds")


class VaultSourceStatus(_Model):
    lease_id: str = Field("", alias="leaseID")
    lease_duration: int = Field(0, alias="leaseDuration")


class MirrorStatus(_Model):
    mirror_status: Optional[str] = Field(None, alias="mirrorStatus")
    last_sync_time: Optional[datetime] = Field(None, alias="lastSyncTime")
    vault_source: Optional[VaultSourceStatus] = Field(None, alias="vaultSource")


class SecretMirror(_Model):
    """A SecretMirror resource as seen by one reconcile pass."""
    namespace: str
    name: str
    spec: MirrorSpec = Field(default_factory=MirrorSpec)
    status: MirrorStatus = Field(default_factory=MirrorStatus)
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[str] = None
    resource_version: str = ""
    # Untouched CR body, used for event posting
    body: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "SecretMirror":
        meta = body.get("metadata", {})
        return cls(
            namespace=meta.get("namespace", ""),
            name=meta.get("name", ""),
            spec=MirrorSpec.model_validate(body.get("spec") or {}),
            status=MirrorStatus.model_validate(body.get("status") or {}),
            finalizers=list(meta.get("finalizers") or []),
            deletion_timestamp=meta.get("deletionTimestamp"),
            resource_version=meta.get("resourceVersion", ""),
            body=body,
        )

    @property
    def key(self) -> MirrorKey:
        return MirrorKey(self.namespace, self.name)

    @property
    def identity(self) -> str:
        """Owner identity stamped on every destination copy."""
        return str(self.key)

    @property
    def is_deleting(self) -> bool:
        return bool(self.deletion_timestamp)

    @property
    def poll_period(self) -> float:
        return float(self.spec.poll_period_seconds)

    def apply_defaults(self, default_poll_period: int = 180):
        """In-memory equivalent of the admission defaulter."""
        spec = self.spec
        if not spec.poll_period_seconds:
            spec.poll_period_seconds = default_poll_period
        if not spec.source.type:
            spec.source.type = SourceType.SECRET.value
        if not spec.source.name:
            spec.source.name = self.name
        if not spec.destination.type:
            spec.destination.type = DestinationType.NAMESPACES.value
        if not spec.delete_policy:
            spec.delete_policy = DeletePolicy.DELETE.value

        if spec.source.vault is not None:
            spec.source.vault.apply_defaults(self.namespace)
        if spec.destination.vault is not None:
            spec.destination.vault.apply_defaults(self.namespace)

        # A vault path cannot be deleted through a mirror
        if spec.destination.type == DestinationType.VAULT.value:
            spec.delete_policy = DeletePolicy.RETAIN.value
