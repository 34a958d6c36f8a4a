"""Wrapper-Utilities für Aufrufe über die Plugin-Grenze.

Dieses Modul stellt zwei Bausteine bereit:

- ``call_entry``: ruft einen Plugin-Entry-Point auf und wandelt
  "kein Ergebnis" (Exception oder ``None``) in einen
  ``PluginContractError`` um.
- ``fatal_boundary``: Decorator für Host-seitige Operationen. Fatale
  ``BridgeError`` werden mit Diagnose geloggt und beenden den Prozess
  (``SystemExit`` im Haupt-Thread, ``os._exit`` in Block-Threads),
  sofern die Config das nicht abschaltet.
"""

from __future__ import annotations

import inspect
import logging
import os
import sys
import threading
from functools import wraps
from typing import Any, Callable, NoReturn, TypeVar

from .error_codes import ErrorCode
from .exceptions import BridgeError, PluginContractError

logger = logging.getLogger(__name__)

R = TypeVar("R")

EXIT_FAILURE = 1


def call_entry(func: Callable[..., Any], *args: Any, entry: str) -> Any:
    """Ruft einen Plugin-Entry-Point auf.

    Args:
        func: Aufgelöster Entry-Point
        *args: Positionale Argumente (Vertrag des Entry-Points)
        entry: Name des Entry-Points für die Diagnose

    Returns:
        Rückgabewert des Entry-Points (nie None)

    Raises:
        PluginContractError: Wenn der Entry-Point eine Exception wirft
            oder None zurückgibt. ``BridgeError`` aus dem Entry-Point
            (z.B. vom Block-Helper) wird unverändert weitergereicht.

    Example:
        >>> call_entry(lambda: [1, 2], entry="forcepy_init")
        [1, 2]
    """
    try:
        result = func(*args)
    except BridgeError:
        raise
    except Exception as exc:
        raise PluginContractError(
            f"Python function \"{entry}\" raised {type(exc).__name__}: {exc}. "
            "No result returned from python. Clean up the python plugin code!",
            entry=entry,
            error_code=ErrorCode.NO_RESULT,
        ) from exc

    if result is None:
        raise PluginContractError(
            f"Python function \"{entry}\" returned None. "
            "No result returned from python. Clean up the python plugin code!",
            entry=entry,
            error_code=ErrorCode.NO_RESULT,
        )
    return result


def report_fatal(error: BridgeError) -> None:
    """Loggt die Diagnose eines fatalen Fehlers.

    Args:
        error: Fataler Bridge-Fehler
    """
    logger.critical(
        f"Fatal plugin error [{error.error_code} {error.category}]: "
        f"{error.message}",
        extra={"bridge_error": error.to_ffi_dict()},
    )


def terminate_process() -> NoReturn:
    """Beendet den gesamten Prozess sofort mit ``EXIT_FAILURE``.

    ``SystemExit`` beendet in einem Worker-Thread nur diesen Thread; die
    übrigen Block-Threads würden weiter Ergebnisse schreiben. Log-Handler
    werden vorher geflusht, damit die Diagnose nicht verloren geht.
    """
    logging.shutdown()
    for stream in (sys.stdout, sys.stderr):
        stream.flush()
    os._exit(EXIT_FAILURE)


def fatal_boundary(
    func: Callable[..., R] | None = None, *, config_arg: str = "config"
) -> Any:
    """Decorator für Host-seitige Operationen der Bridge.

    Fatale ``BridgeError`` (Konfigurationsfehler, Vertragsverletzungen)
    werden geloggt und als ``SystemExit(EXIT_FAILURE)`` weitergereicht.
    Außerhalb des Haupt-Threads (Block-Threads des Hosts) wird der Prozess
    stattdessen über ``terminate_process`` beendet. Ist ``fatal_exit`` in der Config abgeschaltet, wird nur geloggt und der
    ``BridgeError`` unverändert weitergeworfen. Nicht-fatale Fehler
    (Lifecycle-Bugs) passieren die Boundary immer unverändert.

    Args:
        func: Zu dekorierende Funktion
        config_arg: Name des Parameters, der die ``BridgeConfig`` trägt

    Example:
        >>> @fatal_boundary
        ... def tsa_python_plugin(tsi, dates, outputs, nc, nt, nodata, config):
        ...     ...
    """

    def decorator(inner: Callable[..., R]) -> Callable[..., R]:
        signature = inspect.signature(inner)

        @wraps(inner)
        def wrapper(*args: Any, **kwargs: Any) -> R:
            try:
                return inner(*args, **kwargs)
            except BridgeError as exc:
                if not exc.fatal:
                    raise
                report_fatal(exc)
                if not _fatal_exit_enabled(signature, config_arg, args, kwargs):
                    raise
                if threading.current_thread() is not threading.main_thread():
                    terminate_process()
                raise SystemExit(EXIT_FAILURE) from exc

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


def _fatal_exit_enabled(
    signature: inspect.Signature,
    config_arg: str,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> bool:
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return True
    config = bound.arguments.get(config_arg)
    return bool(getattr(config, "fatal_exit", True))


__all__ = [
    "EXIT_FAILURE",
    "call_entry",
    "fatal_boundary",
    "report_fatal",
    "terminate_process",
]
