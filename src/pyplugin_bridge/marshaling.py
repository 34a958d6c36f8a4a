"""Marshaling between host buffers and runtime arrays.

## Layout

Host data arrives as one buffer per sample (TSI) or one buffer per sample and
band (ARD), each holding ``nc`` int16 cells. Plugins see a single
``(nt, nb, nc)`` int16 array where, for every sample, all bands of that
sample are contiguous. Calendar fields are four ``(nt,)`` int32 arrays.

Results come back as ``(nb, nc)`` int16 arrays; row ``b`` is copied into the
host's output buffer for band ``b``.

## Ownership

Every object handed to a plugin is wrapped in a ``RuntimeArray`` lease that
is registered with the runtime until released. Leases are context managers;
the driver enters them into one ``ExitStack`` per invocation so they are
released on every exit path.
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np
import pyarrow as pa

from shared.arrow_schemas import (
    CALENDAR_DTYPE,
    CALENDAR_FIELDS,
    RESULT_DTYPE,
    SAMPLE_DTYPE,
    calendar_columns,
    create_calendar_batch,
)
from shared.error_codes import ErrorCode
from shared.exceptions import PluginContractError, RuntimeStateError, ValidationError

from .dates import DateRecord
from .runtime import RuntimeHandle


class RuntimeArray:
    """Lease on an object owned by the runtime for one invocation."""

    __slots__ = ("_handle", "_value", "_released", "label")

    def __init__(self, handle: RuntimeHandle, value: Any, label: str) -> None:
        self._handle = handle
        self._value = value
        self._released = False
        self.label = label
        handle.track(self, label)

    @property
    def value(self) -> Any:
        if self._released:
            raise RuntimeStateError(f"Runtime array {self.label!r} was already released")
        return self._value

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._value = None
        self._released = True
        self._handle.untrack(self)

    def __enter__(self) -> "RuntimeArray":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"RuntimeArray({self.label!r}, {state})"


# =============================================================================
# Host → runtime
# =============================================================================


def _check_count(buffers: Sequence[Any], expected: int, name: str) -> None:
    if len(buffers) != expected:
        raise ValidationError(
            f"{name} holds {len(buffers)} buffers, expected {expected}",
            field=name,
            error_code=ErrorCode.SIZE_MISMATCH,
            expected=expected,
            actual=len(buffers),
        )


def _sample_buffer(buffer: Any, nc: int, name: str) -> np.ndarray:
    arr = np.asarray(buffer)
    if arr.dtype != SAMPLE_DTYPE:
        raise ValidationError(
            f"{name} has dtype {arr.dtype}, expected {SAMPLE_DTYPE}",
            field=name,
            error_code=ErrorCode.TYPE_MISMATCH,
            expected=str(SAMPLE_DTYPE),
            actual=str(arr.dtype),
        )
    if arr.shape != (nc,):
        raise ValidationError(
            f"{name} has shape {arr.shape}, expected ({nc},)",
            field=name,
            error_code=ErrorCode.SIZE_MISMATCH,
            expected=[nc],
            actual=list(arr.shape),
        )
    return arr


def marshal_tsi(
    handle: RuntimeHandle, tsi: Sequence[Any], nt: int, nc: int
) -> RuntimeArray:
    """Copy ``nt`` interpolated samples into a ``(nt, 1, nc)`` array."""
    _check_count(tsi, nt, "tsi")
    data = np.empty((nt, 1, nc), dtype=SAMPLE_DTYPE)
    for t in range(nt):
        data[t, 0] = _sample_buffer(tsi[t], nc, f"tsi[{t}]")
    return RuntimeArray(handle, data, "data")


def marshal_ard(
    handle: RuntimeHandle, ard: Sequence[Sequence[Any]], nt: int, nb: int, nc: int
) -> RuntimeArray:
    """Copy ``nt`` multi-band observations into a ``(nt, nb, nc)`` array."""
    _check_count(ard, nt, "ard")
    data = np.empty((nt, nb, nc), dtype=SAMPLE_DTYPE)
    for t in range(nt):
        bands = ard[t]
        _check_count(bands, nb, f"ard[{t}]")
        for b in range(nb):
            data[t, b] = _sample_buffer(bands[b], nc, f"ard[{t}][{b}]")
    return RuntimeArray(handle, data, "data")


def marshal_calendar(
    handle: RuntimeHandle, dates: Sequence[DateRecord], nt: int
) -> list[RuntimeArray]:
    """Build the ``ce``, ``year``, ``month`` and ``day`` arrays, in that order."""
    _check_count(dates, nt, "dates")
    try:
        batch = create_calendar_batch(
            [d.ce for d in dates],
            [d.year for d in dates],
            [d.month for d in dates],
            [d.day for d in dates],
        )
    except (pa.ArrowInvalid, pa.ArrowTypeError, OverflowError, TypeError) as exc:
        raise ValidationError(
            f"Calendar fields do not fit {CALENDAR_DTYPE}: {exc}",
            field="dates",
            error_code=ErrorCode.TYPE_MISMATCH,
        ) from exc

    columns = calendar_columns(batch)
    # Arrow buffers are read-only; plugins get their own writable copies.
    arrays = [np.array(columns[name], dtype=CALENDAR_DTYPE) for name in CALENDAR_FIELDS]
    return [
        RuntimeArray(handle, arr, name) for name, arr in zip(CALENDAR_FIELDS, arrays)
    ]


def marshal_scalar(handle: RuntimeHandle, value: int, label: str) -> RuntimeArray:
    return RuntimeArray(handle, int(value), label)


# =============================================================================
# Runtime → host
# =============================================================================


def check_outputs(outputs: Sequence[Any], nb: int, nc: int) -> None:
    """Make sure the host provided one writable int16 buffer per band."""
    _check_count(outputs, nb, "outputs")
    for b, out in enumerate(outputs):
        name = f"outputs[{b}]"
        if not isinstance(out, np.ndarray):
            raise ValidationError(
                f"{name} must be a numpy array, got {type(out).__name__}",
                field=name,
                error_code=ErrorCode.TYPE_MISMATCH,
            )
        _sample_buffer(out, nc, name)
        if not out.flags.writeable:
            raise ValidationError(
                f"{name} is read-only",
                field=name,
                error_code=ErrorCode.INVALID_ARGUMENT,
            )


def validate_result(
    result: Any, nb: int, nc: int, entry: str, *, dry_run: bool = False
) -> np.ndarray:
    """Check a result against the negotiated ``(nb, nc)`` int16 contract.

    Raises:
        PluginContractError: On any mismatch; the message carries the expected
            and the received value.
    """
    prefix = f"Testing {entry} failed with dummy data. " if dry_run else ""
    suffix = " Clean up the python plugin code!"

    if not isinstance(result, np.ndarray):
        raise PluginContractError(
            f"{prefix}Returned object is not a numpy array but "
            f"{type(result).__name__}.{suffix}",
            entry=entry,
            expected="numpy.ndarray",
            actual=type(result).__name__,
            error_code=ErrorCode.CONTRACT_VIOLATION,
        )

    if result.ndim != 2:
        raise PluginContractError(
            f"{prefix}Returned dimensions are incorrect: {result.ndim}. "
            f"Expected 2.{suffix}",
            entry=entry,
            expected=2,
            actual=result.ndim,
            error_code=ErrorCode.DIMENSION_MISMATCH,
        )

    if result.shape[0] != nb:
        raise PluginContractError(
            f"{prefix}Returned array size is incorrect. "
            f"Expected {nb} elements in 1st dimension, "
            f"received {result.shape[0]}.{suffix}",
            entry=entry,
            expected=nb,
            actual=int(result.shape[0]),
            error_code=ErrorCode.SHAPE_MISMATCH,
        )

    if result.shape[1] != nc:
        raise PluginContractError(
            f"{prefix}Returned array size is incorrect. "
            f"Expected {nc} elements in 2nd dimension (not all pixels returned), "
            f"received {result.shape[1]}.{suffix}",
            entry=entry,
            expected=nc,
            actual=int(result.shape[1]),
            error_code=ErrorCode.SHAPE_MISMATCH,
        )

    if result.dtype != RESULT_DTYPE:
        raise PluginContractError(
            f"{prefix}Returned array has dtype {result.dtype}, "
            f"expected {RESULT_DTYPE}.{suffix}",
            entry=entry,
            expected=str(RESULT_DTYPE),
            actual=str(result.dtype),
            error_code=ErrorCode.DTYPE_MISMATCH,
        )

    return result


def copy_result(result: np.ndarray, outputs: Sequence[np.ndarray]) -> None:
    """Copy row ``b`` of a validated result into ``outputs[b]``."""
    for b, out in enumerate(outputs):
        np.copyto(out, result[b])
