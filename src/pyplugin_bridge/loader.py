"""Loading user plugin sources into the runtime."""

from __future__ import annotations

import logging
import types
from pathlib import Path
from typing import Any, Callable

from shared.error_codes import ErrorCode
from shared.exceptions import PluginConfigError

from .parallel import BLOCK_HELPER_MARKER, is_block_helper
from .runtime import RuntimeHandle

logger = logging.getLogger(__name__)


def _read_source(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise PluginConfigError(
            f"Python plugin file {str(path)!r} could not be opened: {exc.strerror or exc}",
            path=str(path),
            error_code=ErrorCode.FILE_NOT_FOUND,
        ) from exc


def _execute(module: types.ModuleType, source: bytes, path: Path) -> None:
    namespace = vars(module)
    namespace["__file__"] = str(path)
    try:
        code = compile(source, str(path), "exec")
    except (SyntaxError, ValueError) as exc:
        raise PluginConfigError(
            f"Python plugin file {str(path)!r} could not be parsed: {exc}",
            path=str(path),
            error_code=ErrorCode.PARSE_FAILED,
        ) from exc

    try:
        exec(code, namespace)
    except Exception as exc:
        raise PluginConfigError(
            f"Python plugin file {str(path)!r} failed while loading: "
            f"{type(exc).__name__}: {exc}",
            path=str(path),
            error_code=ErrorCode.PARSE_FAILED,
        ) from exc


def load(
    handle: RuntimeHandle,
    site: str,
    path: str | Path,
    *,
    apply_entry: str,
    pixel_entry: str,
) -> types.ModuleType:
    """Execute a plugin source in a fresh module of the runtime.

    Top-level names of the source become resolvable entry points. The module
    starts out with the runtime prelude and the block helper bound to
    ``apply_entry``; the source may override both.

    Raises:
        PluginConfigError: If the file cannot be read, parsed or executed.
    """
    source_path = Path(path)
    with handle.acquire():
        source = _read_source(source_path)
        module = handle.new_module(
            site, apply_entry=apply_entry, pixel_entry=pixel_entry
        )
        _execute(module, source, source_path)
    logger.info(f"Loaded python plugin {source_path} for call site {site!r}")
    return module


def reload(handle: RuntimeHandle, module: types.ModuleType, path: str | Path) -> None:
    """Re-execute a plugin source into its existing module.

    Names defined by the previous execution stay in place unless the source
    redefines them.
    """
    source_path = Path(path)
    with handle.acquire():
        _execute(module, _read_source(source_path), source_path)
    logger.debug(f"Re-executed python plugin {source_path}")


def resolve_entry(module: types.ModuleType, name: str, role: str) -> Callable[..., Any]:
    """Look up an entry point by name.

    Raises:
        PluginConfigError: If the name is missing or not callable.
    """
    func = vars(module).get(name)
    if func is None:
        raise PluginConfigError(
            f"Python function \"{name}\" ({role}) was not found. "
            "Check your python plugin code!",
            entry=name,
            error_code=ErrorCode.MISSING_ENTRY_POINT,
            role=role,
        )
    if not callable(func):
        raise PluginConfigError(
            f"Python name \"{name}\" ({role}) is not callable "
            f"but {type(func).__name__}. Check your python plugin code!",
            entry=name,
            error_code=ErrorCode.MISSING_ENTRY_POINT,
            role=role,
        )
    return func


def resolve_apply(module: types.ModuleType, name: str) -> Callable[..., Any]:
    """Look up the apply entry point.

    When the plugin relies on the injected block helper, the per-pixel
    function the helper maps must exist as well; otherwise the plugin has no
    apply entry point at all.
    """
    func = resolve_entry(module, name, "apply")
    if is_block_helper(func):
        pixel_entry = getattr(func, BLOCK_HELPER_MARKER)
        if not callable(vars(module).get(pixel_entry)):
            raise PluginConfigError(
                f"Python function \"{name}\" (apply) was not found, and there is "
                f"no \"{pixel_entry}\" function for the default block helper. "
                "Check your python plugin code!",
                entry=name,
                error_code=ErrorCode.MISSING_ENTRY_POINT,
                role="apply",
                pixel_entry=pixel_entry,
            )
    return func
