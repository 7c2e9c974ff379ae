import logging
from typing import Union

from mirrors.backends.base import Source
from mirrors.models import MirrorPhase
from mirrors.payload import SecretPayload
from mirrors.signals import EVENT_WARNING, ReconcileSignal

logger = logging.getLogger("mirrors.source.secret")


class KubernetesSecretSource(Source):
    """Reads the source secret from the mirror's own namespace."""

    def retrieve(self) -> Union[SecretPayload, ReconcileSignal]:
        mirror = self.ctx.mirror
        name = mirror.spec.source.name
        secret = self.ctx.kube.read_secret(mirror.namespace, name)
        if secret is None:
            return ReconcileSignal(
                message=f"secret {mirror.namespace}/{name} not found, waiting to appear",
                requeue_after=self.ctx.settings.SOURCE_MISSING_REQUEUE_AFTER,
                phase=MirrorPhase.PENDING.value,
                event_type=EVENT_WARNING,
                event_reason="NoSecret",
            )
        logger.debug(f"retrieved source secret {secret} (version {secret.resource_version})")
        return secret
