"""Output contract negotiation.

The init entry point tells the bridge how many output bands the plugin
produces. The count is negotiated once per call site and fixed for the rest
of the run; every result the apply entry point returns is checked against it.
"""

from __future__ import annotations

import logging
import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from shared.error_codes import ErrorCode
from shared.exceptions import PluginContractError
from shared.ffi_wrapper import call_entry

from .config import PluginSiteConfig
from .loader import load, resolve_apply, resolve_entry
from .runtime import RuntimeHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginDescriptor:
    """A loaded plugin with its negotiated output contract.

    Immutable after negotiation and shared read-only by every invocation.
    """

    site: str
    path: Path | None
    nb: int
    init_entry: str
    apply_entry: str
    pixel_entry: str
    bands: tuple[str, ...] = ()
    module: types.ModuleType | None = field(default=None, compare=False, repr=False)
    apply: Callable[..., Any] | None = field(default=None, compare=False, repr=False)

    @property
    def loaded(self) -> bool:
        return self.module is not None


def descriptor_for_disabled(site: str, site_config: PluginSiteConfig) -> PluginDescriptor:
    """Descriptor of a call site without plugin: one band, nothing loaded."""
    return PluginDescriptor(
        site=site,
        path=None,
        nb=1,
        init_entry=site_config.init_entry,
        apply_entry=site_config.apply_entry,
        pixel_entry=site_config.pixel_entry,
    )


def _band_count(registered: Any, entry: str) -> int:
    try:
        nb = len(registered)
    except TypeError as exc:
        raise PluginContractError(
            f"Python function \"{entry}\" must return a sequence of output bands, "
            f"got {type(registered).__name__}. Clean up the python plugin code!",
            entry=entry,
            actual=type(registered).__name__,
            error_code=ErrorCode.INVALID_BAND_COUNT,
        ) from exc
    if nb < 1:
        raise PluginContractError(
            f"Python function \"{entry}\" returned an empty sequence, "
            "a plugin must produce at least one band. Clean up the python plugin code!",
            entry=entry,
            expected=">= 1",
            actual=nb,
            error_code=ErrorCode.INVALID_BAND_COUNT,
        )
    return nb


def negotiate(
    handle: RuntimeHandle, site: str, site_config: PluginSiteConfig
) -> PluginDescriptor:
    """Load a plugin and fix its number of output bands.

    Raises:
        PluginConfigError: If the source cannot be loaded or an entry point
            is missing.
        PluginContractError: If the init entry point does not return a
            non-empty sequence.
    """
    if not site_config.enabled:
        return descriptor_for_disabled(site, site_config)

    assert site_config.file is not None
    with handle.acquire():
        module = load(
            handle,
            site,
            site_config.file,
            apply_entry=site_config.apply_entry,
            pixel_entry=site_config.pixel_entry,
        )
        init = resolve_entry(module, site_config.init_entry, "init")
        registered = call_entry(init, entry=site_config.init_entry)
        nb = _band_count(registered, site_config.init_entry)
        apply = resolve_apply(module, site_config.apply_entry)

    descriptor = PluginDescriptor(
        site=site,
        path=Path(site_config.file),
        nb=nb,
        init_entry=site_config.init_entry,
        apply_entry=site_config.apply_entry,
        pixel_entry=site_config.pixel_entry,
        bands=tuple(str(band) for band in registered),
        module=module,
        apply=apply,
    )
    logger.info(f"Python plugin for call site {site!r} produces {nb} bands")
    return descriptor
