"""
Vault session: authentication, path read/write and lease renewal.

`VaultClient` is the only place hvac is touched; adapters depend on its
small contract (addr, token, login_approle, read, write, renew) so tests can
swap in an in-memory store.
"""

import base64
import binascii
import logging
from typing import Any, Callable, Dict, Optional

import hvac
import requests
from hvac import exceptions as vault_exc

from mirrors.models import MirrorPhase, VaultAuth, VaultAuthType
from mirrors.signals import EVENT_WARNING, ReconcileSignal

logger = logging.getLogger("mirrors.vault")

# hvac raises one exception class per HTTP status
_STATUS_BY_EXCEPTION = {
    vault_exc.InvalidRequest: 400,
    vault_exc.Unauthorized: 401,
    vault_exc.Forbidden: 403,
    vault_exc.InvalidPath: 404,
    vault_exc.RateLimitExceeded: 429,
    vault_exc.InternalServerError: 500,
    vault_exc.VaultNotInitialized: 501,
    vault_exc.BadGateway: 502,
    vault_exc.VaultDown: 503,
}


def http_status_label(error: BaseException) -> str:
    """HTTP status for a Vault error, '-' when there is none."""
    for exc_type, status in _STATUS_BY_EXCEPTION.items():
        if isinstance(error, exc_type):
            return str(status)
    return "-"


class VaultClient:
    def __init__(self, addr: str, timeout: int = 30):
        self._client = hvac.Client(url=addr, timeout=timeout)

    @property
    def addr(self) -> str:
        return self._client.url

    @property
    def token(self) -> Optional[str]:
        return self._client.token

    @token.setter
    def token(self, value: str):
        self._client.token = value

    def login_approle(self, mount_point: str, role_id: str, secret_id: str):
        # use_token (hvac default) stores the client token on success
        self._client.auth.approle.login(role_id=role_id, secret_id=secret_id, mount_point=mount_point)

    def read(self, path: str) -> Optional[Dict[str, Any]]:
        """Full response envelope for `path`, or None when nothing is there."""
        try:
            response = self._client.read(path)
        except vault_exc.InvalidPath:
            return None
        return response if isinstance(response, dict) else None

    def write(self, path: str, data: Dict[str, Any]):
        self._client.write_data(path, data=data)

    def renew(self, lease_id: str, increment: int) -> Dict[str, Any]:
        return self._client.sys.renew_lease(lease_id=lease_id, increment=increment)


VaultFactory = Callable[[str], VaultClient]


def extract_secret_data(response: Dict[str, Any]) -> Dict[str, bytes]:
    """
    Normalize a read response into raw bytes.

    KV v2 nests the payload under data.data; KV v1 and dynamic engines put it
    directly under data. Values that strictly decode as base64 are decoded,
    everything else is taken as UTF-8 text.
    """
    secret_data = response.get("data") or {}
    if "data" in secret_data:
        nested = secret_data["data"]
        payload = nested if isinstance(nested, dict) else {}
    else:
        payload = secret_data

    data = {}
    for k, v in payload.items():
        if not isinstance(v, str):
            raise ValueError(f"vault key {k} contains non-string value")
        try:
            data[k] = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            data[k] = v.encode("utf-8")
    return data


def encode_secret_data(data: Dict[str, bytes]) -> Dict[str, str]:
    return {k: base64.b64encode(v).decode("ascii") for k, v in data.items()}


def _auth_missing(message: str) -> ReconcileSignal:
    return ReconcileSignal(
        message=message,
        phase=MirrorPhase.PENDING.value,
        event_type=EVENT_WARNING,
        event_reason="VaultAuthMissing",
    )


def authenticate(kube, session: VaultClient, auth: VaultAuth, default_namespace: str) -> Optional[ReconcileSignal]:
    """
    Log `session` in using credentials from a referenced Kubernetes secret.

    Returns a signal when the credentials are not available (yet) or are
    rejected; None once the session holds a usable token.
    """
    if auth.auth_type == VaultAuthType.APPROLE:
        approle = auth.approle
        ref = approle.secret_ref
        namespace = ref.namespace or default_namespace
        secret = kube.read_secret(namespace, ref.name)
        if secret is None:
            return _auth_missing(f"secret {namespace}/{ref.name} for vault approle login not found")

        role_id_key = approle.role_id_key or "role-id"
        secret_id_key = approle.secret_id_key or "secret-id"
        if role_id_key not in secret.data:
            return _auth_missing(f"cannot find roleID under secret {namespace}/{ref.name} and key {role_id_key}")
        if secret_id_key not in secret.data:
            return _auth_missing(f"cannot find secretID under secret {namespace}/{ref.name} and key {secret_id_key}")

        try:
            session.login_approle(
                approle.app_role_path or "approle",
                secret.data[role_id_key].decode("utf-8"),
                secret.data[secret_id_key].decode("utf-8"),
            )
        except (vault_exc.VaultError, requests.RequestException) as e:
            return ReconcileSignal(
                message=f"error logging in to vault via approle: {e}",
                phase=MirrorPhase.ERROR.value,
                event_type=EVENT_WARNING,
                event_reason="VaultAuthInvalid",
            )
    else:
        token_auth = auth.token
        if token_auth is None or not token_auth.secret_ref.name:
            return _auth_missing("vault token secretRef is not set")
        ref = token_auth.secret_ref
        namespace = ref.namespace or default_namespace
        secret = kube.read_secret(namespace, ref.name)
        if secret is None:
            return _auth_missing(f"secret {namespace}/{ref.name} for vault token not found")

        token_key = token_auth.token_key or "token"
        if token_key not in secret.data:
            return _auth_missing(f"cannot find token under secret {namespace}/{ref.name} and key {token_key}")
        session.token = secret.data[token_key].decode("utf-8")

    logger.info(f"logged in to vault {session.addr} ({auth.auth_type.value})")
    return None
