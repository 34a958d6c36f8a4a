"""Host-side registration of python plugins.

```python
import numpy as np

from pyplugin_bridge import (
    Completion,
    deregister_python,
    load_config,
    output_bands,
    register_python,
    tsa_python_plugin,
)

config = load_config("plugin.json")
register_python(config)

outputs = [np.empty(nc, dtype=np.int16) for _ in range(output_bands(config, "tsa"))]
status = tsa_python_plugin(tsi, dates, outputs, nc, nt, nodata, config)

deregister_python(config)
```
"""

from __future__ import annotations

import logging

from shared.arrow_schemas import (
    CALENDAR_SCHEMA,
    SCHEMA_REGISTRY_VERSION,
    get_schema_fingerprint,
)
from shared.exceptions import BridgeError, RuntimeStateError
from shared.ffi_wrapper import fatal_boundary

from .config import BridgeConfig
from .contract import PluginDescriptor, negotiate
from .driver import self_test
from .runtime import finalize, get_runtime, initialize, is_initialized

logger = logging.getLogger(__name__)


@fatal_boundary
def register_python(config: BridgeConfig) -> dict[str, PluginDescriptor]:
    """Start the runtime and negotiate every enabled call site.

    Does nothing when no call site has a plugin. Must be called once, before
    the first block is processed.

    Returns:
        Descriptors of the enabled call sites, keyed by site.
    """
    if not config.any_enabled:
        return {}

    handle = initialize(pool_backend=config.pool_backend)
    descriptors: dict[str, PluginDescriptor] = {}
    try:
        for site in config.enabled_sites():
            descriptor = negotiate(handle, site, config.site(site))
            if config.self_test:
                self_test(handle, descriptor, config)
            handle.register(descriptor)
            descriptors[site] = descriptor
    except BridgeError:
        finalize()
        raise
    logger.info(
        f"Registered python plugins for call sites: {sorted(descriptors)}, "
        f"calendar schema {SCHEMA_REGISTRY_VERSION} "
        f"({get_schema_fingerprint(CALENDAR_SCHEMA)[:12]})"
    )
    return descriptors


def deregister_python(config: BridgeConfig) -> None:
    """Tear the runtime down after the last block was processed."""
    if config.any_enabled and is_initialized():
        finalize()


def output_bands(config: BridgeConfig, site: str) -> int:
    """Number of output bands the host must allocate for a call site."""
    if not config.site(site).enabled:
        return 1
    descriptor = get_runtime().descriptor(site)
    if descriptor is None:
        raise RuntimeStateError(
            f"Python plugin for call site {site!r} is enabled but was never registered"
        )
    return descriptor.nb
