"""Block-level data parallelism for plugins.

Plugins usually only describe what happens to a single pixel. The runtime
injects ``make_block_helper``'s result under the apply entry name, so such a
plugin never writes its own apply function: the helper fans the pixels of a
block out over a bounded worker pool and reassembles the per-pixel results.

A per-pixel function receives one tuple ``(ts, date, nodata)``:

- ``ts``: ``(nb, nt)`` int16 array, the time series of one pixel
- ``date``: ``(nt,)`` object array of ``datetime.date``
- ``nodata``: nodata value

and returns a sequence of ``nb_out`` values.
"""

from __future__ import annotations

import logging
import multiprocessing
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date as Date
from typing import Any, Callable, Iterable, MutableMapping, Sequence

import numpy as np

from shared.arrow_schemas import RESULT_DTYPE

logger = logging.getLogger(__name__)

POOL_BACKENDS: tuple[str, ...] = ("process", "thread")

BLOCK_HELPER_MARKER = "__pyplugin_block_helper__"

_FORK_WARNED = False


def _warn_threaded_fork() -> None:
    global _FORK_WARNED
    if _FORK_WARNED or threading.active_count() <= 1:
        return
    _FORK_WARNED = True
    logger.warning(
        f"Forking worker processes from a host with {threading.active_count()} "
        "threads; locks held by other threads are copied in their held state. "
        "Use pool_backend='thread' when the host runs several block threads."
    )


def _run_pool(
    func: Callable[[Any], Any],
    argss: Sequence[Any],
    nproc: int,
    backend: str,
) -> list[Any]:
    workers = max(1, int(nproc))

    if backend == "process":
        if "fork" in multiprocessing.get_all_start_methods():
            _warn_threaded_fork()
            # Plugin functions live in a module that only exists in this
            # process; forked workers inherit it, spawned ones would not.
            ctx = multiprocessing.get_context("fork")
            with ctx.Pool(workers) as pool:
                return pool.map(func, argss)
        logger.warning("fork start method unavailable, using thread pool instead")

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(func, argss))


def map_block(
    func: Callable[[Any], Any],
    iblock: np.ndarray,
    year: Iterable[int],
    month: Iterable[int],
    day: Iterable[int],
    nodata: int,
    nproc: int,
    backend: str = "process",
) -> np.ndarray:
    """Apply a per-pixel function to every cell of a block.

    Args:
        func: Per-pixel function, called with ``(ts, date, nodata)``.
        iblock: ``(nt, nb, nc)`` block; cells are independent.
        year, month, day: Calendar fields per sample.
        nodata: Nodata value handed to every call.
        nproc: Worker pool size.
        backend: ``"process"`` or ``"thread"``.

    Returns:
        C-contiguous int16 array ``(nb_out, nc)``; column ``c`` holds the
        result of cell ``c``.
    """
    date = np.array([Date(y, m, d) for y, m, d in zip(year, month, day)])
    argss = [(ts, date, nodata) for ts in iblock.T]

    res = _run_pool(func, argss, nproc, backend)

    oblock = np.array(res, dtype=RESULT_DTYPE).T
    return oblock.copy()


def make_block_helper(
    namespace: MutableMapping[str, Any],
    pixel_entry: str,
    backend: str = "process",
) -> Callable[..., np.ndarray]:
    """Build the default apply function for one plugin namespace.

    The per-pixel function is looked up in ``namespace`` at call time, so a
    plugin may define it after the helper was injected.
    """
    if backend not in POOL_BACKENDS:
        raise ValueError(f"unknown pool backend {backend!r}")

    def block_helper(iblock, ce, year, month, day, nodata, nproc):
        return map_block(
            namespace[pixel_entry], iblock, year, month, day, nodata, nproc, backend
        )

    setattr(block_helper, BLOCK_HELPER_MARKER, pixel_entry)
    return block_helper


def is_block_helper(func: Any) -> bool:
    return hasattr(func, BLOCK_HELPER_MARKER)
