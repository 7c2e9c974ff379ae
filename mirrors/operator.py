"""
Secret Mirror Operator: kopf wiring for the SecretMirror controller.

Architecture:
  SecretMirror CRD → one daemon per mirror → reconcile pass loop:
    1. Load mirror, attach finalizer
    2. Poll gate → retrieve from source → sync to destination
    3. Update status, post events, sleep until requeue or wake-up

  On Delete:
    Finalizer pass runs destination cleanup, then releases the mirror

  Namespace watch:
    Feeds the namespace registry; a new namespace wakes every mirror whose
    patterns match it, forcing a pass past the poll gate

  Concurrency Control:
    - Passes for one mirror are serial (one async daemon per mirror)
    - Namespace fan-out goes through one bounded pool shared by all mirrors

Run with:  kopf run -m mirrors.operator --all-namespaces
"""

import asyncio
import logging

import kopf

from mirrors.config import settings as cfg
from mirrors.main import serve_in_thread
from mirrors.models import MirrorKey
from mirrors.runtime import Runtime, build_runtime
from mirrors.signals import OutcomeKind

logger = logging.getLogger("mirrors.operator")

CRD = (cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.CRD_PLURAL)


# ---------------------------------------------------------------------------
# Kopf operator settings + runtime
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    settings.posting.enabled = True
    settings.persistence.finalizer = cfg.KOPF_FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=cfg.ANNOTATION_PREFIX)
    settings.execution.max_workers = cfg.MAX_WORKERS

    runtime = build_runtime(cfg)
    memo.runtime = runtime
    runtime.registry.bootstrap(
        runtime.backend.kube.list_namespace_names,
        backoff=cfg.NAMESPACE_LIST_BACKOFF,
        stop=runtime.stop,
    )
    if cfg.API_ENABLED:
        serve_in_thread(runtime, cfg.API_HOST, cfg.API_PORT)

    logger.info(
        f"Secret Mirror Operator started (max_workers={cfg.MAX_WORKERS}, "
        f"pool_size={cfg.WORKER_POOL_SIZE}, default_poll={cfg.DEFAULT_POLL_PERIOD_SECONDS}s)"
    )


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **kwargs):
    runtime: Runtime = memo.runtime
    runtime.shutdown()
    logger.info("Secret Mirror Operator stopped")


# ---------------------------------------------------------------------------
# DAEMON: the per-mirror reconcile loop
# ---------------------------------------------------------------------------

@kopf.daemon(*CRD)
async def run_mirror(stopped, name, namespace, memo: kopf.Memo, logger, **kwargs):
    """
    Reconcile one mirror until it is deleted or the operator stops.

    Each pass runs on a worker thread; between passes the daemon sleeps on
    the event loop for the requeue delay the pass asked for, and wakes early
    (forced) on spec changes or new matching namespaces. The daemon never
    holds a kopf executor thread.
    """
    runtime: Runtime = memo.runtime
    key = MirrorKey(namespace, name)
    force = False
    try:
        while not stopped:
            outcome = await asyncio.to_thread(runtime.reconciler.reconcile, namespace, name, force)
            if outcome.kind is OutcomeKind.STOPPED:
                logger.info(f"Mirror {key}: {outcome.message}, daemon exiting")
                break
            force = await runtime.bus.wait(key, outcome.requeue_after, stopped)
    finally:
        runtime.bus.forget(key)


# ---------------------------------------------------------------------------
# UPDATE handler: spec changes trigger an immediate pass
# ---------------------------------------------------------------------------

@kopf.on.update(*CRD, field="spec")
def wake_on_spec_change(name, namespace, memo: kopf.Memo, logger, **kwargs):
    runtime: Runtime = memo.runtime
    logger.info(f"Mirror {namespace}/{name}: spec changed, waking")
    runtime.bus.wake(MirrorKey(namespace, name), force=True)


# ---------------------------------------------------------------------------
# DELETE handler: finalizer pass
# ---------------------------------------------------------------------------

@kopf.on.delete(*CRD, optional=True)
def delete_mirror(name, namespace, memo: kopf.Memo, logger, **kwargs):
    """
    Run destination cleanup and release our finalizer.

    A failed cleanup keeps the finalizer; kopf retries the handler.
    """
    runtime: Runtime = memo.runtime
    outcome = runtime.reconciler.reconcile(namespace, name)
    if outcome.kind is OutcomeKind.FAILED:
        raise kopf.TemporaryError(
            f"Cleanup of {namespace}/{name} failed: {outcome.message}",
            delay=outcome.requeue_after,
        )
    logger.info(f"Mirror {namespace}/{name}: {outcome.message or 'cleanup complete'}")


# ---------------------------------------------------------------------------
# Namespace watch: keeps the registry current
# ---------------------------------------------------------------------------

@kopf.on.event("v1", "namespaces")
def track_namespace(event, name, meta, memo: kopf.Memo, **kwargs):
    runtime: Runtime = memo.runtime
    registry = runtime.registry
    if event.get("type") == "DELETED" or meta.get("deletionTimestamp"):
        registry.delete_namespace(name)
        return

    if not registry.add_namespace(name):
        return
    for key in registry.matching_mirrors(name):
        logger.info(f"Namespace {name} created, waking mirror {key}")
        runtime.bus.wake(key, force=True)
