"""
SecretMirror reconciliation: one pass per call, driven by the operator.

Pass structure:
  1. Load the mirror and apply in-memory defaults
  2. Attach our finalizer, or run cleanup when the mirror is being deleted
  3. Gate on the poll period, retrieve from the source, sync to the destination
  4. Translate the result into phase, events, status and the next requeue

Design Principles:
  - Expected conditions are ReconcileSignal values, failures are exceptions
  - Status is written once per pass, and only when it changed
  - Status write failures never abort a pass
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from mirrors import metrics
from mirrors.backends import make_destination, make_source
from mirrors.context import MirrorBackend, MirrorContext
from mirrors.models import MirrorPhase, SecretMirror
from mirrors.signals import EVENT_NORMAL, Outcome, OutcomeKind, ReconcileSignal

logger = logging.getLogger("mirrors.reconciler")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIME_FORMAT)


class MirrorReconciler:
    def __init__(self, backend: MirrorBackend, clock: Callable[[], datetime] = utcnow):
        self.backend = backend
        self.clock = clock

    @property
    def settings(self):
        return self.backend.settings

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def init(self, namespace: str, name: str) -> Optional[MirrorContext]:
        body = self.backend.kube.get_mirror(namespace, name)
        if body is None:
            return None
        mirror = SecretMirror.from_body(body)
        mirror.apply_defaults(self.settings.DEFAULT_POLL_PERIOD_SECONDS)
        return MirrorContext(backend=self.backend, mirror=mirror)

    # ------------------------------------------------------------------
    # Finalizer
    # ------------------------------------------------------------------

    def _persist_finalizers(self, ctx: MirrorContext, finalizers):
        mirror = ctx.mirror
        updated = self.backend.kube.patch_mirror_metadata(
            mirror.namespace, mirror.name,
            {"finalizers": finalizers, "resourceVersion": mirror.resource_version},
        )
        mirror.finalizers = list(finalizers)
        if isinstance(updated, dict):
            mirror.resource_version = updated.get("metadata", {}).get("resourceVersion", mirror.resource_version)

    def setup_or_run_finalizer(self, ctx: MirrorContext) -> bool:
        """Returns True when the pass must stop here."""
        mirror = ctx.mirror
        finalizer = self.settings.FINALIZER
        has_finalizer = finalizer in mirror.finalizers

        if not mirror.is_deleting:
            if not has_finalizer:
                self._persist_finalizers(ctx, mirror.finalizers + [finalizer])
                logger.info(f"[{mirror.identity}] finalizer attached")
            return False

        if not has_finalizer:
            return True

        logger.info(f"[{mirror.identity}] running cleanup (deletePolicy={mirror.spec.delete_policy})")
        make_destination(ctx).cleanup()
        self._persist_finalizers(ctx, [f for f in mirror.finalizers if f != finalizer])
        self.backend.recorder.forget(mirror)
        logger.info(f"[{mirror.identity}] cleanup complete, finalizer removed")
        return True

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(self, ctx: MirrorContext, force: bool = False) -> Optional[ReconcileSignal]:
        mirror = ctx.mirror
        status = mirror.status
        if status.mirror_status is None:
            status.mirror_status = MirrorPhase.PENDING.value
            if status.last_sync_time is None:
                status.last_sync_time = EPOCH
            self._persist_status(ctx)

        source = make_source(ctx)
        destination = make_destination(ctx)
        source.setup()
        destination.setup()

        now = self.clock()
        next_sync = (status.last_sync_time or EPOCH) + timedelta(seconds=mirror.poll_period)
        if now < next_sync and not force:
            remaining = (next_sync - now).total_seconds()
            logger.debug(f"[{mirror.identity}] next sync in {remaining:.0f}s")
            return ReconcileSignal(message="not due for sync yet", requeue_after=remaining)

        ctx.retrieved = True
        payload = source.retrieve()
        if isinstance(payload, ReconcileSignal):
            return payload

        signal = destination.sync(payload)
        if signal is not None:
            return signal

        metrics.record_sync(mirror.identity, mirror.spec.source.type, mirror.spec.destination.type)
        return None

    # ------------------------------------------------------------------
    # Result translation
    # ------------------------------------------------------------------

    def _persist_status(self, ctx: MirrorContext):
        mirror = ctx.mirror
        status = mirror.status
        if status.model_dump() == ctx.original_status.model_dump():
            return
        lease = status.vault_source
        body = {
            "mirrorStatus": status.mirror_status,
            "lastSyncTime": _format_time(status.last_sync_time),
            "vaultSource": lease.model_dump(by_alias=True) if lease is not None else None,
        }
        try:
            self.backend.kube.patch_mirror_status(mirror.namespace, mirror.name, body)
        except Exception as e:
            logger.error(f"[{mirror.identity}] status update failed: {e}")
            return
        ctx.original_status = status.model_copy(deep=True)

    def handle_result(self, ctx: MirrorContext, signal: Optional[ReconcileSignal],
                      error: Optional[BaseException]) -> Outcome:
        mirror = ctx.mirror
        status = mirror.status
        previous = ctx.original_status.mirror_status

        if error is not None:
            status.mirror_status = MirrorPhase.ERROR.value
            logger.error(f"[{mirror.identity}] reconcile failed: {error}")
            outcome = Outcome(OutcomeKind.FAILED, self.settings.DEFAULT_REQUEUE_AFTER,
                              MirrorPhase.ERROR.value, str(error))
        elif signal is not None:
            if signal.phase:
                status.mirror_status = signal.phase
            requeue = signal.requeue_after if signal.requeue_after is not None else mirror.poll_period
            outcome = Outcome(OutcomeKind.SIGNALLED, requeue, status.mirror_status, signal.message)
            logger.info(f"[{mirror.identity}] {signal.message} (requeue in {requeue:.0f}s)")
        else:
            status.mirror_status = MirrorPhase.ACTIVE.value
            outcome = Outcome(OutcomeKind.SYNCED, mirror.poll_period, MirrorPhase.ACTIVE.value, "synced")

        if error is None and ctx.retrieved and status.mirror_status == MirrorPhase.ACTIVE.value:
            status.last_sync_time = self.clock()

        self._persist_status(ctx)

        if signal is not None and signal.has_event:
            ctx.emit(signal.event_type, signal.event_reason, signal.message)
        if outcome.kind is OutcomeKind.SYNCED:
            if previous != MirrorPhase.ACTIVE.value:
                ctx.emit(EVENT_NORMAL, "Active", "mirror is active")
            ctx.emit(EVENT_NORMAL, "Synced", f"secret synced to {mirror.spec.destination.type}")
        return outcome

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def reconcile(self, namespace: str, name: str, force: bool = False) -> Outcome:
        ctx = self.init(namespace, name)
        if ctx is None:
            logger.info(f"mirror {namespace}/{name} not found, stopping")
            return Outcome.stopped("mirror not found")

        try:
            if self.setup_or_run_finalizer(ctx):
                return Outcome.stopped("mirror is being deleted")
        except Exception as e:
            return self.handle_result(ctx, None, e)

        try:
            signal = self.sync(ctx, force=force)
        except Exception as e:
            return self.handle_result(ctx, None, e)
        return self.handle_result(ctx, signal, None)
