"""
Kubernetes service layer: abstracts all K8s API interactions.

Design principles:
  - 404 means "absent": reads return None, deletes are no-ops
  - Everything else propagates as ApiException
  - Secret data crosses this seam as raw bytes (base64 handled here)
"""

import base64
import logging
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client import ApiException

from mirrors.config import Settings, settings as default_settings
from mirrors.payload import SecretPayload

logger = logging.getLogger("mirrors.kubernetes_service")

_k8s_loaded = False


def _ensure_k8s(cfg: Settings):
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if cfg.IN_CLUSTER:
        config.load_incluster_config()
    else:
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config(config_file=cfg.KUBECONFIG or None)
    _k8s_loaded = True


def secret_from_api(secret: client.V1Secret) -> SecretPayload:
    meta = secret.metadata
    return SecretPayload(
        name=meta.name,
        namespace=meta.namespace,
        type=secret.type or "Opaque",
        labels=dict(meta.labels or {}),
        annotations=dict(meta.annotations or {}),
        data={k: base64.b64decode(v) for k, v in (secret.data or {}).items()},
        resource_version=meta.resource_version or "",
    )


def secret_to_api(payload: SecretPayload) -> client.V1Secret:
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=payload.name,
            namespace=payload.namespace,
            labels=dict(payload.labels),
            annotations=dict(payload.annotations),
            resource_version=payload.resource_version or None,
        ),
        type=payload.type,
        data={k: base64.b64encode(v).decode("ascii") for k, v in payload.data.items()},
    )


class KubeClient:
    """Thin wrapper over CoreV1Api / CustomObjectsApi used by the reconciler."""

    def __init__(self, core: Optional[client.CoreV1Api] = None,
                 custom: Optional[client.CustomObjectsApi] = None,
                 cfg: Settings = default_settings):
        if core is None or custom is None:
            _ensure_k8s(cfg)
        self.core = core or client.CoreV1Api()
        self.custom = custom or client.CustomObjectsApi()
        self.cfg = cfg

    # --- SecretMirror ---

    def get_mirror(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self.custom.get_namespaced_custom_object(
                self.cfg.CRD_GROUP, self.cfg.CRD_VERSION, namespace, self.cfg.CRD_PLURAL, name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def patch_mirror_metadata(self, namespace: str, name: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return self.custom.patch_namespaced_custom_object(
            self.cfg.CRD_GROUP, self.cfg.CRD_VERSION, namespace, self.cfg.CRD_PLURAL, name,
            {"metadata": metadata},
        )

    def patch_mirror_status(self, namespace: str, name: str, status: Dict[str, Any]) -> Dict[str, Any]:
        return self.custom.patch_namespaced_custom_object_status(
            self.cfg.CRD_GROUP, self.cfg.CRD_VERSION, namespace, self.cfg.CRD_PLURAL, name,
            {"status": status},
        )

    # --- Secrets ---

    def read_secret(self, namespace: str, name: str) -> Optional[SecretPayload]:
        try:
            return secret_from_api(self.core.read_namespaced_secret(name=name, namespace=namespace))
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def create_secret(self, payload: SecretPayload):
        self.core.create_namespaced_secret(namespace=payload.namespace, body=secret_to_api(payload))
        logger.debug(f"Secret {payload} created")

    def replace_secret(self, payload: SecretPayload):
        self.core.replace_namespaced_secret(
            name=payload.name, namespace=payload.namespace, body=secret_to_api(payload)
        )
        logger.debug(f"Secret {payload} updated")

    def delete_secret(self, namespace: str, name: str) -> bool:
        """Delete a secret, ignore 404. Returns True if something was deleted."""
        try:
            self.core.delete_namespaced_secret(name=name, namespace=namespace)
            return True
        except ApiException as e:
            if e.status == 404:
                logger.info(f"Secret {namespace}/{name} already gone")
                return False
            raise

    # --- Namespaces ---

    def list_namespace_names(self) -> List[str]:
        return [ns.metadata.name for ns in self.core.list_namespace().items]
