import logging
from typing import Optional

import requests
from hvac import exceptions as vault_exc

from mirrors.backends.base import Destination
from mirrors.models import MirrorPhase
from mirrors.payload import SecretPayload, data_differ
from mirrors.services.vault_service import authenticate, encode_secret_data, extract_secret_data
from mirrors.signals import EVENT_WARNING, ReconcileSignal

logger = logging.getLogger("mirrors.destination.vault")


class VaultSecretDestination(Destination):
    """Writes the payload to a single Vault path. Nothing to register or clean up."""

    def sync(self, payload: SecretPayload) -> Optional[ReconcileSignal]:
        mirror = self.ctx.mirror
        spec = mirror.spec.destination.vault
        if spec is None:
            raise ValueError("destination.vault must be set for a vault destination")

        if not payload.data:
            return ReconcileSignal(
                message="no data in source secret",
                requeue_after=self.ctx.settings.DEFAULT_REQUEUE_AFTER,
            )

        session = self.ctx.backend.new_vault_session(spec.addr)
        signal = authenticate(self.ctx.kube, session, spec.auth, mirror.namespace)
        if signal is not None:
            return signal

        current = session.read(spec.path)
        if current is not None and not data_differ(payload.data, extract_secret_data(current)):
            logger.debug(f"[{mirror.identity}] vault path {spec.path} is identical to the source, skipping")
            return None

        try:
            session.write(spec.path, {"data": encode_secret_data(payload.data)})
        except (vault_exc.VaultError, requests.RequestException) as e:
            return ReconcileSignal(
                message=f"Error syncing to vault: {e}",
                phase=MirrorPhase.ERROR.value,
                event_type=EVENT_WARNING,
                event_reason="VaultError",
            )
        logger.info(f"[{mirror.identity}] secret {payload} written to vault {spec.addr} path {spec.path}")
        return None
