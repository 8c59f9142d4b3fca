"""
Runtime measurement for generation stages.

Stages are keyed by (object name, function name) so several meshes can be
timed side by side. Runtimes accumulate when the same stage runs twice.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Tuple

import structlog

logger = structlog.get_logger()


class FunctionTimer:
    """Accumulates wall-clock runtimes of named stages."""

    def __init__(self):
        self._runtimes: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()

    @contextmanager
    def timed(self, object_name: str, function_name: str) -> Iterator[None]:
        """Time the enclosed block and record it under the given names."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                key = (object_name, function_name)
                self._runtimes[key] = self._runtimes.get(key, 0.0) + elapsed
            logger.debug("Stage timed", object=object_name, function=function_name,
                         seconds=round(elapsed, 4))

    def get_runtime(self, object_name: str, function_name: str) -> float:
        """Return accumulated seconds for a stage, 0.0 if it never ran."""
        with self._lock:
            return self._runtimes.get((object_name, function_name), 0.0)

    def get_all_runtimes(self) -> Dict[str, float]:
        with self._lock:
            return {f"{obj}.{fn}": seconds for (obj, fn), seconds in self._runtimes.items()}

    def log_all_runtimes(self) -> None:
        for name, seconds in sorted(self.get_all_runtimes().items()):
            logger.info("Stage runtime", stage=name, seconds=round(seconds, 4))

    def reset(self) -> None:
        with self._lock:
            self._runtimes.clear()


# Shared timer used by the pipeline
timer = FunctionTimer()
