"""Process-wide plugin runtime.

There is exactly one runtime per process. It is created by ``initialize()``
before the first plugin is loaded and destroyed by ``finalize()`` after the
last invocation returned; the host guarantees that order, the runtime only
refuses obviously wrong sequences.

Everything that touches plugin state (loading, calling, creating or releasing
runtime arrays) runs under ``RuntimeHandle.acquire()``, which holds one
re-entrant lock for the whole operation. Host block threads are therefore
serialized at the bridge; parallelism inside an invocation comes from the
block helper's worker pool.
"""

from __future__ import annotations

import logging
import sys
import threading
import types
from contextlib import contextmanager
from datetime import date as Date
from multiprocessing.pool import Pool
from typing import TYPE_CHECKING, Any, Iterator

import numpy as np

from shared.error_codes import ErrorCode
from shared.exceptions import RuntimeStateError

from .parallel import POOL_BACKENDS, make_block_helper

if TYPE_CHECKING:
    from .contract import PluginDescriptor

logger = logging.getLogger(__name__)

MODULE_PREFIX = "pyplugin_"

_HANDLE: "RuntimeHandle | None" = None
_HANDLE_LOCK = threading.Lock()


class RuntimeHandle:
    """State of the plugin runtime.

    Attributes:
        lock: Re-entrant lock serializing every entry into the runtime.
        prelude: Names every plugin module starts with (``np``, ``Date``,
            ``Pool``).
        pool_backend: Worker pool used by the injected block helper.
    """

    def __init__(self, pool_backend: str = "process") -> None:
        if pool_backend not in POOL_BACKENDS:
            raise RuntimeStateError(
                f"Unknown pool backend {pool_backend!r}",
                error_code=ErrorCode.INVALID_STATE,
                allowed=list(POOL_BACKENDS),
            )
        self.lock = threading.RLock()
        self.pool_backend = pool_backend
        self.prelude: dict[str, Any] = {"np": np, "Date": Date, "Pool": Pool}
        self._modules: dict[str, types.ModuleType] = {}
        self._descriptors: dict[str, "PluginDescriptor"] = {}
        self._live: dict[int, str] = {}
        self._live_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def acquire(self) -> Iterator["RuntimeHandle"]:
        """Hold the runtime lock for the duration of the block."""
        with self.lock:
            if self._closed:
                raise RuntimeStateError("Plugin runtime was already finalized")
            yield self

    # =========================================================================
    # Plugin modules
    # =========================================================================

    def new_module(
        self, site: str, *, apply_entry: str, pixel_entry: str
    ) -> types.ModuleType:
        """Create the namespace a plugin source is executed into.

        The module is registered in ``sys.modules`` so that its functions can
        be pickled by reference for process pools. An existing module for the
        same site is replaced.
        """
        name = f"{MODULE_PREFIX}{site}"
        module = types.ModuleType(name, f"Python plugin for the {site} call site")
        namespace = vars(module)
        namespace.update(self.prelude)
        namespace[apply_entry] = make_block_helper(
            namespace, pixel_entry, self.pool_backend
        )

        with self.lock:
            self._drop_module(site)
            self._modules[site] = module
            sys.modules[name] = module
        return module

    def module(self, site: str) -> types.ModuleType | None:
        return self._modules.get(site)

    def _drop_module(self, site: str) -> None:
        module = self._modules.pop(site, None)
        if module is None:
            return
        if sys.modules.get(module.__name__) is module:
            del sys.modules[module.__name__]
        vars(module).clear()

    # =========================================================================
    # Descriptors
    # =========================================================================

    def register(self, descriptor: "PluginDescriptor") -> None:
        with self.lock:
            self._descriptors[descriptor.site] = descriptor

    def descriptor(self, site: str) -> "PluginDescriptor | None":
        return self._descriptors.get(site)

    # =========================================================================
    # Live-object ledger
    # =========================================================================

    def track(self, obj: object, label: str) -> None:
        with self._live_lock:
            self._live[id(obj)] = label

    def untrack(self, obj: object) -> None:
        with self._live_lock:
            self._live.pop(id(obj), None)

    @property
    def live_objects(self) -> int:
        """Number of runtime arrays that were created but not released."""
        with self._live_lock:
            return len(self._live)

    def live_labels(self) -> list[str]:
        with self._live_lock:
            return sorted(self._live.values())

    def close(self) -> None:
        with self.lock:
            if self._closed:
                return
            leaked = self.live_labels()
            if leaked:
                raise RuntimeStateError(
                    f"Cannot finalize plugin runtime with {len(leaked)} "
                    "unreleased runtime arrays",
                    error_code=ErrorCode.LEAKED_REFERENCES,
                    leaked=leaked,
                )
            for site in list(self._modules):
                self._drop_module(site)
            self._descriptors.clear()
            self._closed = True


def initialize(pool_backend: str = "process") -> RuntimeHandle:
    """Create the process-wide runtime.

    Must be called once, before any plugin is loaded.

    Raises:
        RuntimeStateError: If the runtime is already initialized.
    """
    global _HANDLE
    with _HANDLE_LOCK:
        if _HANDLE is not None:
            raise RuntimeStateError("Plugin runtime is already initialized")
        _HANDLE = RuntimeHandle(pool_backend=pool_backend)
    logger.info(f"Plugin runtime initialized (pool backend: {pool_backend})")
    return _HANDLE


def finalize() -> None:
    """Tear down the process-wide runtime after the last invocation.

    Raises:
        RuntimeStateError: If the runtime is not initialized or runtime arrays
            are still outstanding.
    """
    global _HANDLE
    with _HANDLE_LOCK:
        if _HANDLE is None:
            raise RuntimeStateError("Plugin runtime is not initialized")
        _HANDLE.close()
        _HANDLE = None
    logger.info("Plugin runtime finalized")


def get_runtime() -> RuntimeHandle:
    """Return the runtime, which must be initialized."""
    handle = _HANDLE
    if handle is None:
        raise RuntimeStateError("Plugin runtime is not initialized")
    return handle


def is_initialized() -> bool:
    return _HANDLE is not None
