"""
Namespaces destination: copies the payload into every live namespace
matching the mirror's patterns.

Ownership rules:
  - Every copy carries an owned-by annotation with the mirror identity
  - A copy owned by someone else (or by nobody) is never touched
  - Deletion on cleanup only happens under deletePolicy=delete
"""

import logging
import re
from typing import Optional

from mirrors import metrics
from mirrors.backends.base import Destination, sync_timestamp
from mirrors.models import DeletePolicy, MirrorPhase, SourceType
from mirrors.payload import SecretPayload, copy_secret, secret_differ
from mirrors.registry import compile_patterns
from mirrors.signals import EVENT_WARNING, ReconcileSignal

logger = logging.getLogger("mirrors.destination.namespaces")


class NamespacesDestination(Destination):
    def setup(self):
        mirror = self.ctx.mirror
        patterns = compile_patterns(mirror.spec.destination.namespaces)
        self.ctx.backend.registry.register(mirror.key, patterns)

    def sync(self, payload: SecretPayload) -> Optional[ReconcileSignal]:
        mirror = self.ctx.mirror
        targets = sorted(self.ctx.backend.registry.matching_namespaces(mirror.key))
        result = self.ctx.backend.pool.fan_out(targets, lambda ns: self._sync_one(payload, ns))
        if not result.ok:
            return ReconcileSignal(
                message=f"unable to sync some objects: {result.first_error}",
                phase=MirrorPhase.ERROR.value,
                event_type=EVENT_WARNING,
                event_reason="SyncError",
            )
        metrics.set_namespace_count(mirror.identity, mirror.spec.source.type, len(targets))
        return None

    def _owned(self, secret: SecretPayload) -> bool:
        owner = secret.annotations.get(self.ctx.annotation("owned-by"))
        return owner == self.ctx.mirror.identity

    def _stamp(self, dest: SecretPayload, payload: SecretPayload):
        mirror = self.ctx.mirror
        annotations = dest.annotations
        annotations[self.ctx.annotation("owned-by")] = mirror.identity
        annotations[self.ctx.annotation("last-sync-at")] = sync_timestamp()
        annotations[self.ctx.annotation("source-type")] = mirror.spec.source.type

        if mirror.spec.source.type == SourceType.SECRET.value:
            annotations[self.ctx.annotation("parent-version")] = payload.resource_version
        elif mirror.spec.source.type == SourceType.VAULT.value:
            annotations[self.ctx.annotation("vault-path")] = payload.name
            lease = mirror.status.vault_source
            if lease is not None:
                annotations[self.ctx.annotation("vault-lease-id")] = lease.lease_id
                annotations[self.ctx.annotation("vault-lease-duration")] = str(lease.lease_duration)

    def _sync_one(self, payload: SecretPayload, namespace: str):
        kube = self.ctx.kube
        name = self.ctx.mirror.spec.source.name
        existing = kube.read_secret(namespace, name)

        if existing is not None and not self._owned(existing):
            logger.info(f"secret {existing} is not owned by {self.ctx.mirror.identity}, skipping")
            return

        dest = existing or SecretPayload(name=name, namespace=namespace, type=payload.type)
        if existing is not None and not secret_differ(payload, existing):
            logger.debug(f"secret {existing} is identical to the source, skipping")
            return

        copy_secret(payload, dest)
        self._stamp(dest, payload)
        if existing is None:
            kube.create_secret(dest)
            logger.info(f"secret {dest} created")
        else:
            kube.replace_secret(dest)
            logger.info(f"secret {dest} updated")

    def cleanup(self):
        mirror = self.ctx.mirror
        registry = self.ctx.backend.registry
        # Patterns are gone after a restart; re-register to find the copies
        try:
            self.setup()
        except re.error as e:
            # whatever an earlier valid spec registered still applies
            logger.warning(f"[{mirror.identity}] invalid namespace pattern, nothing to clean up: {e}")
        targets = sorted(registry.matching_namespaces(mirror.key))
        registry.deregister(mirror.key)
        metrics.clear_namespace_count(mirror.identity, mirror.spec.source.type)

        if mirror.spec.delete_policy != DeletePolicy.DELETE.value:
            for namespace in targets:
                logger.info(f"retaining secret {namespace}/{mirror.spec.source.name} ({mirror.spec.delete_policy})")
            return

        result = self.ctx.backend.pool.fan_out(targets, self._delete_one)
        if not result.ok:
            raise result.first_error

    def _delete_one(self, namespace: str):
        kube = self.ctx.kube
        name = self.ctx.mirror.spec.source.name
        existing = kube.read_secret(namespace, name)
        if existing is None:
            return
        if not self._owned(existing):
            logger.info(f"secret {existing} is not owned by {self.ctx.mirror.identity}, leaving it")
            return
        if kube.delete_secret(namespace, name):
            logger.info(f"secret {existing} deleted")
