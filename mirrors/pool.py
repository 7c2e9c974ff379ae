"""
Process-wide bounded worker pool for destination fan-out.

One pool is shared by every mirror so the total number of concurrent
outbound calls stays capped no matter how many mirrors run or how many
namespaces one of them targets.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

logger = logging.getLogger("mirrors.pool")

T = TypeVar("T")


@dataclass
class FanOutResult:
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, BaseException] = field(default_factory=dict)
    # First error in completion order
    first_error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.first_error is None


class SyncPool:
    def __init__(self, size: int = 100):
        self.size = size
        self._executor = ThreadPoolExecutor(max_workers=size, thread_name_prefix="mirror-sync")

    def fan_out(self, targets: Iterable[str], task: Callable[[str], T]) -> FanOutResult:
        """
        Run `task` once per target and wait for all of them.

        A failing task never cancels its siblings: every submitted task runs
        to completion and only the first error is kept as the overall error.
        """
        futures = {self._executor.submit(task, target): target for target in targets}
        result = FanOutResult()
        for future in as_completed(futures):
            target = futures[future]
            error = future.exception()
            if error is None:
                result.succeeded.append(target)
                continue
            logger.warning(f"sync to {target} failed: {error}")
            result.failed[target] = error
            if result.first_error is None:
                result.first_error = error
        return result

    def shutdown(self):
        self._executor.shutdown(wait=True)
