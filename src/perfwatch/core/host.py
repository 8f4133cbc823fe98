"""Process metrics capture via psutil, and the memory reclamation capability."""

from __future__ import annotations

import gc
import logging
import os
from collections.abc import Callable

import psutil

from perfwatch.errors import UnsupportedReclamation
from perfwatch.models.runtime import ProcessMetrics

logger = logging.getLogger("perfwatch.host")

# Anything returning ProcessMetrics can stand in for the host (tests use fakes).
HostProbe = Callable[[], ProcessMetrics]

# Returns the number of objects reclaimed.
Reclaimer = Callable[[], int]


def _memory_limit(proc: psutil.Process) -> int:
    """Effective memory ceiling: the address-space rlimit if set, else physical RAM."""
    total = psutil.virtual_memory().total
    if not hasattr(psutil, "RLIMIT_AS"):
        return total
    try:
        soft, _hard = proc.rlimit(psutil.RLIMIT_AS)
    except (psutil.AccessDenied, AttributeError, OSError):
        return total
    if soft == psutil.RLIM_INFINITY or soft <= 0:
        return total
    return min(soft, total)


class ProcessProbe:
    """Samples memory and CPU of one process without blocking.

    CPU percent is measured since the previous call, so the first reading
    after construction is primed here and discarded.
    """

    def __init__(self, pid: int | None = None) -> None:
        self._pid = pid if pid is not None else os.getpid()
        self._proc = psutil.Process(self._pid)
        self._proc.cpu_percent(interval=None)

    def __call__(self) -> ProcessMetrics:
        try:
            with self._proc.oneshot():
                rss = self._proc.memory_info().rss
                cpu = self._proc.cpu_percent(interval=None)
            limit = _memory_limit(self._proc)
        except psutil.NoSuchProcess:
            logger.warning("Process %d no longer exists", self._pid)
            return ProcessMetrics(heap_used_bytes=0, heap_limit_bytes=0, cpu_percent=0.0)
        except psutil.AccessDenied:
            logger.warning("Access denied reading process %d", self._pid)
            return ProcessMetrics(heap_used_bytes=0, heap_limit_bytes=0, cpu_percent=0.0)

        return ProcessMetrics(
            heap_used_bytes=rss,
            heap_limit_bytes=limit,
            cpu_percent=round(cpu, 1),
        )


def gc_reclaim() -> int:
    """Run a full garbage collection across all generations."""
    return gc.collect()


def reclaim(reclaimer: Reclaimer | None) -> int:
    """Invoke the reclamation capability, or raise if the host has none."""
    if reclaimer is None:
        raise UnsupportedReclamation("No memory reclamation capability configured")
    return reclaimer()
