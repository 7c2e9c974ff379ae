"""
Vault source with lease reuse.

When the previous read returned a renewable lease, later passes renew that
lease instead of reading again, so dynamic engines do not mint fresh
credentials on every poll.
"""

import logging
from typing import Union

import requests
from hvac import exceptions as vault_exc

from mirrors import metrics
from mirrors.backends.base import Source
from mirrors.models import MirrorPhase, VaultSourceStatus
from mirrors.payload import SecretPayload
from mirrors.services.vault_service import authenticate, extract_secret_data, http_status_label
from mirrors.signals import EVENT_NORMAL, ReconcileSignal

logger = logging.getLogger("mirrors.source.vault")

VAULT_NAMESPACE = "<vault>"


class VaultSecretSource(Source):
    def _nothing_to_sync(self, path: str) -> ReconcileSignal:
        return ReconcileSignal(
            message=f"no data need to be synced, vaultPath: {path}",
            requeue_after=self.ctx.mirror.poll_period,
            phase=MirrorPhase.ACTIVE.value,
        )

    def retrieve(self) -> Union[SecretPayload, ReconcileSignal]:
        mirror = self.ctx.mirror
        spec = mirror.spec.source.vault
        if spec is None:
            raise ValueError("source.vault must be set for a vault source")

        session = self.ctx.backend.new_vault_session(spec.addr)
        signal = authenticate(self.ctx.kube, session, spec.auth, mirror.namespace)
        if signal is not None:
            return signal

        lease = mirror.status.vault_source
        if lease is not None and lease.lease_id:
            try:
                renewed = session.renew(lease.lease_id, lease.lease_duration)
            except (vault_exc.VaultError, requests.RequestException) as e:
                mirror.status.vault_source = None
                metrics.record_lease_renew_error(mirror.identity, spec.addr, http_status_label(e))
                logger.info(f"[{mirror.identity}] lease {lease.lease_id} renewal failed, reading again: {e}")
            else:
                lease.lease_id = renewed.get("lease_id") or lease.lease_id
                lease.lease_duration = renewed.get("lease_duration") or lease.lease_duration
                metrics.record_lease_renew_ok(mirror.identity, spec.addr)
                self.ctx.emit(
                    EVENT_NORMAL, "VaultLeaseRenew",
                    f"lease {lease.lease_id} renewed for {lease.lease_duration}s",
                )
                return self._nothing_to_sync(spec.path)

        response = session.read(spec.path)
        if response is None:
            return self._nothing_to_sync(spec.path)

        if response.get("renewable"):
            mirror.status.vault_source = VaultSourceStatus(
                lease_id=response.get("lease_id", ""),
                lease_duration=response.get("lease_duration", 0),
            )
            self.ctx.emit(
                EVENT_NORMAL, "VaultNewCreds",
                f"new credentials issued from {spec.path}, lease {response.get('lease_id', '')}",
            )

        return SecretPayload(
            name=spec.path,
            namespace=VAULT_NAMESPACE,
            data=extract_secret_data(response),
        )
