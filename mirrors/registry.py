"""
Namespace registry: which namespaces exist, which mirrors want them.

Two independent pieces of state, each behind its own lock:
  - the live namespace set, fed by the namespace watcher
  - per-mirror compiled patterns, fed by destination adapter setup/cleanup

The locks are never held together; every query snapshots one side, releases
its lock, then snapshots the other.

Both locks are plain mutexes rather than reader/writer locks: the standard
library has none, and every critical section is a dict or set copy, so
readers never hold a lock across pattern matching or I/O.
"""

import asyncio
import logging
import re
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Set

from mirrors.models import MirrorKey

logger = logging.getLogger("mirrors.registry")


class NamespaceRegistry:
    def __init__(self):
        self._namespaces: Set[str] = set()
        self._namespaces_lock = threading.Lock()
        self._patterns: Dict[MirrorKey, List[Pattern]] = {}
        self._patterns_lock = threading.Lock()
        self._ready = threading.Event()

    # --- mirror patterns ---

    def register(self, mirror: MirrorKey, patterns: Iterable[Pattern]):
        """Replace the mirror's pattern set wholesale."""
        compiled = list(patterns)
        with self._patterns_lock:
            self._patterns[mirror] = compiled

    def deregister(self, mirror: MirrorKey):
        with self._patterns_lock:
            self._patterns.pop(mirror, None)

    def is_registered(self, mirror: MirrorKey) -> bool:
        with self._patterns_lock:
            return mirror in self._patterns

    # --- live namespaces ---

    def add_namespace(self, name: str) -> bool:
        """Returns True when the namespace was not known before."""
        with self._namespaces_lock:
            if name in self._namespaces:
                return False
            self._namespaces.add(name)
            return True

    def delete_namespace(self, name: str):
        with self._namespaces_lock:
            self._namespaces.discard(name)

    # --- queries ---

    def matching_namespaces(self, mirror: MirrorKey) -> Set[str]:
        """Live namespaces matching any of the mirror's patterns."""
        with self._patterns_lock:
            patterns = list(self._patterns.get(mirror, ()))
        if not patterns:
            return set()
        with self._namespaces_lock:
            namespaces = list(self._namespaces)
        return {ns for ns in namespaces if any(p.search(ns) for p in patterns)}

    def matching_mirrors(self, namespace: str) -> Set[MirrorKey]:
        """Mirrors whose patterns match the namespace, live or not."""
        with self._patterns_lock:
            entries = list(self._patterns.items())
        return {key for key, patterns in entries if any(p.search(namespace) for p in patterns)}

    def snapshot(self) -> dict:
        with self._namespaces_lock:
            namespaces = sorted(self._namespaces)
        with self._patterns_lock:
            patterns = {str(k): [p.pattern for p in v] for k, v in self._patterns.items()}
        return {"ready": self.is_ready, "namespaces": namespaces, "mirrors": patterns}

    # --- bootstrap ---

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def bootstrap(self, list_namespaces: Callable[[], Iterable[str]], backoff: float = 3.0,
                  stop: Optional[threading.Event] = None):
        """
        Populate the namespace set with a one-shot listing.

        Listing failures are retried every `backoff` seconds until it
        succeeds or `stop` is set.
        """
        while stop is None or not stop.is_set():
            try:
                names = list(list_namespaces())
            except Exception as e:
                logger.info(f"registry: error listing namespaces, retrying in {backoff}s: {e}")
                if stop is not None:
                    stop.wait(backoff)
                else:
                    time.sleep(backoff)
                continue

            with self._namespaces_lock:
                self._namespaces.update(names)
                count = len(self._namespaces)
            self._ready.set()
            logger.info(f"registry: initialized with {count} namespaces")
            return


def compile_patterns(raw: Iterable[str]) -> List[Pattern]:
    """Compile namespace patterns; a malformed one raises re.error."""
    return [re.compile(p) for p in raw]


class _Wakeup:
    __slots__ = ("event", "force")

    def __init__(self):
        self.event = threading.Event()
        self.force = False


class WakeBus:
    """
    Per-mirror wake-up channel.

    The namespace watcher and spec-change handler call `wake` from executor
    threads; the mirror daemon awaits `wait` on the event loop between passes.
    """

    def __init__(self, slice_seconds: float = 1.0):
        self._lock = threading.Lock()
        self._wakeups: Dict[MirrorKey, _Wakeup] = {}
        self._slice = slice_seconds

    def _get(self, mirror: MirrorKey) -> _Wakeup:
        with self._lock:
            wakeup = self._wakeups.get(mirror)
            if wakeup is None:
                wakeup = self._wakeups[mirror] = _Wakeup()
            return wakeup

    def wake(self, mirror: MirrorKey, force: bool = True):
        wakeup = self._get(mirror)
        with self._lock:
            wakeup.force = wakeup.force or force
        wakeup.event.set()

    async def wait(self, mirror: MirrorKey, timeout: Optional[float], stopped=None) -> bool:
        """
        Wait until woken, `timeout` elapses or `stopped` becomes truthy.

        Sleeps on the event loop in slices and holds no thread while waiting.
        Returns whether the wake-up asked for a forced pass.
        """
        wakeup = self._get(mirror)
        deadline = None if timeout is None else time.monotonic() + max(timeout, 0.0)
        while not stopped and not wakeup.event.is_set():
            remaining = self._slice if deadline is None else min(self._slice, deadline - time.monotonic())
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        with self._lock:
            forced, wakeup.force = wakeup.force, False
            wakeup.event.clear()
        return forced

    def forget(self, mirror: MirrorKey):
        with self._lock:
            self._wakeups.pop(mirror, None)
