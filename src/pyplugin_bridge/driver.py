"""Invocation of python plugins for one spatial block.

Two call sites feed plugins:

- ``tsa_python_plugin``: interpolated time series (one value per sample)
- ``ard_python_plugin``: raw multi-band observations (``nb`` values per sample)

Both follow the same protocol under the runtime lock: resolve the apply entry
point, marshal inputs, call ``apply(data, ce, year, month, day, nodata,
nproc)``, validate the result against the negotiated band count, copy it to
the host's output buffers and release every runtime array.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from enum import IntEnum
from typing import Any, Callable, Sequence

import numpy as np

from shared.exceptions import PluginContractError, RuntimeStateError
from shared.ffi_wrapper import call_entry, fatal_boundary

from .config import BridgeConfig
from .contract import PluginDescriptor
from .dates import DateRecord
from .loader import reload, resolve_apply
from .marshaling import (
    RuntimeArray,
    check_outputs,
    copy_result,
    marshal_ard,
    marshal_calendar,
    marshal_scalar,
    marshal_tsi,
    validate_result,
)
from .runtime import RuntimeHandle, get_runtime

logger = logging.getLogger(__name__)

SELF_TEST_NT = 5
SELF_TEST_NC = 10
SELF_TEST_NODATA = -9999
SELF_TEST_NPROC = 2


class Completion(IntEnum):
    """Outcome of a host-facing plugin call."""

    SUCCESS = 0
    CANCEL = 1
    """No plugin configured for the call site; outputs untouched."""


def _registered(site: str, config: BridgeConfig) -> tuple[RuntimeHandle, PluginDescriptor]:
    handle = get_runtime()
    descriptor = handle.descriptor(site)
    if descriptor is None or not descriptor.loaded:
        raise RuntimeStateError(
            f"Python plugin for call site {site!r} is enabled but was never registered"
        )
    return handle, descriptor


def _apply_for(
    handle: RuntimeHandle, descriptor: PluginDescriptor, config: BridgeConfig
) -> Callable[..., Any]:
    assert descriptor.module is not None
    if config.reload_each_call:
        assert descriptor.path is not None
        reload(handle, descriptor.module, descriptor.path)
        return resolve_apply(descriptor.module, descriptor.apply_entry)
    assert descriptor.apply is not None
    return descriptor.apply


def _invoke(
    handle: RuntimeHandle,
    stack: ExitStack,
    descriptor: PluginDescriptor,
    apply: Callable[..., Any],
    data: RuntimeArray,
    dates: Sequence[DateRecord],
    nt: int,
    nc: int,
    nodata: int,
    nproc: int,
    *,
    dry_run: bool = False,
) -> np.ndarray:
    calendar = [stack.enter_context(lease) for lease in marshal_calendar(handle, dates, nt)]
    py_nodata = stack.enter_context(marshal_scalar(handle, nodata, "nodata"))
    py_nproc = stack.enter_context(marshal_scalar(handle, nproc, "nproc"))

    ce, year, month, day = (lease.value for lease in calendar)
    try:
        result = call_entry(
            apply,
            data.value,
            ce,
            year,
            month,
            day,
            py_nodata.value,
            py_nproc.value,
            entry=descriptor.apply_entry,
        )
    except PluginContractError as exc:
        if not dry_run:
            raise
        raise PluginContractError(
            f"Testing {descriptor.apply_entry} failed with dummy data. {exc.message}",
            entry=descriptor.apply_entry,
            error_code=exc.error_code,
        ) from exc
    py_return = stack.enter_context(RuntimeArray(handle, result, "result"))

    return validate_result(
        py_return.value, descriptor.nb, nc, descriptor.apply_entry, dry_run=dry_run
    )


@fatal_boundary
def tsa_python_plugin(
    tsi: Sequence[Any],
    dates: Sequence[DateRecord],
    outputs: Sequence[np.ndarray] | None,
    nc: int,
    nt: int,
    nodata: int,
    config: BridgeConfig,
) -> Completion:
    """Run the TSA plugin on one block of interpolated time series.

    Args:
        tsi: ``nt`` int16 buffers of ``nc`` cells.
        dates: Calendar record per sample.
        outputs: One int16 buffer of ``nc`` cells per negotiated band, or
            None if the host does not produce plugin output for this block.
        nc: Number of cells.
        nt: Number of samples.
        nodata: Nodata value.
        config: Bridge configuration.

    Returns:
        ``Completion.SUCCESS`` or ``Completion.CANCEL`` when no plugin is
        configured.
    """
    if outputs is None or not config.tsa.enabled:
        return Completion.CANCEL

    handle, descriptor = _registered("tsa", config)
    with handle.acquire():
        apply = _apply_for(handle, descriptor, config)
        check_outputs(outputs, descriptor.nb, nc)
        logger.debug(f"tsa plugin: nt={nt} nb={descriptor.nb} nc={nc}")
        with ExitStack() as stack:
            data = stack.enter_context(marshal_tsi(handle, tsi, nt, nc))
            result = _invoke(
                handle, stack, descriptor, apply, data, dates, nt, nc,
                nodata, config.cthread,
            )
            copy_result(result, outputs)
    return Completion.SUCCESS


@fatal_boundary
def ard_python_plugin(
    ard: Sequence[Sequence[Any]],
    dates: Sequence[DateRecord],
    outputs: Sequence[np.ndarray] | None,
    nt: int,
    nb: int,
    nc: int,
    nodata: int,
    config: BridgeConfig,
) -> Completion:
    """Run the PLG plugin on one block of raw multi-band observations.

    Args:
        ard: ``nt`` samples, each ``nb`` int16 buffers of ``nc`` cells.
        dates: Calendar record per sample.
        outputs: One int16 buffer of ``nc`` cells per negotiated band, or
            None if the host does not produce plugin output for this block.
        nt: Number of samples.
        nb: Number of input bands.
        nc: Number of cells.
        nodata: Nodata value.
        config: Bridge configuration.
    """
    if outputs is None or not config.plg.enabled:
        return Completion.CANCEL

    handle, descriptor = _registered("plg", config)
    with handle.acquire():
        apply = _apply_for(handle, descriptor, config)
        check_outputs(outputs, descriptor.nb, nc)
        logger.debug(f"plg plugin: nt={nt} nb_in={nb} nb={descriptor.nb} nc={nc}")
        with ExitStack() as stack:
            data = stack.enter_context(marshal_ard(handle, ard, nt, nb, nc))
            result = _invoke(
                handle, stack, descriptor, apply, data, dates, nt, nc,
                nodata, config.cthread,
            )
            copy_result(result, outputs)
    return Completion.SUCCESS


def self_test(
    handle: RuntimeHandle,
    descriptor: PluginDescriptor,
    config: BridgeConfig,
    seed: int | None = None,
) -> None:
    """Call a freshly negotiated plugin once with dummy data.

    Five samples (the 15th of January to May 2020) of ten random cells with a
    single input band; the result must satisfy the negotiated contract.

    Raises:
        PluginContractError: If the plugin fails on the dummy block.
    """
    rng = np.random.default_rng(seed)
    tsi = [
        rng.integers(0, 10000, size=SELF_TEST_NC, dtype=np.int16)
        for _ in range(SELF_TEST_NT)
    ]
    dates = [DateRecord.from_ymd(2020, t + 1, 15) for t in range(SELF_TEST_NT)]

    with handle.acquire():
        apply = _apply_for(handle, descriptor, config)
        with ExitStack() as stack:
            data = stack.enter_context(
                marshal_tsi(handle, tsi, SELF_TEST_NT, SELF_TEST_NC)
            )
            _invoke(
                handle, stack, descriptor, apply, data, dates,
                SELF_TEST_NT, SELF_TEST_NC, SELF_TEST_NODATA, SELF_TEST_NPROC,
                dry_run=True,
            )
    logger.info(f"Python plugin for call site {descriptor.site!r} passed the self-test")
