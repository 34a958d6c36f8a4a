"""Exception-Hierarchie der Plugin-Bridge.

Alle Fehler an der Grenze Host ↔ Plugin-Runtime werden als
``BridgeError`` (oder Subclass) mit Error-Code und Kontext geworfen.
Die Fatal-Boundary (``shared.ffi_wrapper``) wandelt fatale Fehler in
eine Diagnose plus Prozess-Abbruch um.
"""

from __future__ import annotations

from typing import Any

from .error_codes import ErrorCode, error_category, is_fatal


class BridgeError(Exception):
    """Basis-Exception für alle Bridge-Fehler.

    Attributes:
        message: Menschenlesbare Fehlermeldung
        error_code: Numerischer Error-Code (siehe ErrorCode enum)
        context: Dict mit zusätzlichem Kontext für die Diagnose

    Example:
        >>> try:
        ...     raise BridgeError("Something went wrong", error_code=4000)
        ... except BridgeError as e:
        ...     log.error(f"[{e.error_code}] {e.message}", extra=e.context)
    """

    def __init__(
        self,
        message: str,
        error_code: int | ErrorCode = ErrorCode.INTERNAL_ERROR,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = int(error_code)
        self.context = context or {}

    def __str__(self) -> str:
        """String-Repräsentation mit Error-Code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code}, "
            f"context={self.context!r})"
        )

    @property
    def category(self) -> str:
        """Fehler-Kategorie basierend auf error_code."""
        return error_category(self.error_code)

    @property
    def fatal(self) -> bool:
        """True wenn der Fehler den Prozess beenden muss."""
        return is_fatal(self.error_code)

    def to_ffi_dict(self) -> dict[str, Any]:
        """Konvertiert Exception zu einem Diagnose-Dict.

        Returns:
            Dict mit keys: ok, error_code, message, context, category

        Example:
            >>> e = PluginConfigError("unreadable", path="plugin.py")
            >>> e.to_ffi_dict()["category"]
            'IO'
        """
        return {
            "ok": False,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "category": self.category,
        }


class ValidationError(BridgeError):
    """Ungültige Host-Eingaben.

    Für Fehler bei:
    - Host-Buffern mit falscher Länge oder falschem dtype
    - ungültigen Config-Werten

    Attributes:
        field: Name des fehlerhaften Felds (optional)
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        error_code: int | ErrorCode = ErrorCode.VALIDATION_FAILED,
        **context: Any,
    ) -> None:
        if field:
            context["field"] = field
        super().__init__(message, error_code=error_code, context=context)
        self.field = field


class PluginConfigError(BridgeError):
    """Konfigurationsfehler des Plugins.

    Für Fehler bei:
    - Quelldatei fehlt / nicht lesbar
    - Syntax- oder Laufzeitfehler beim Ausführen der Quelle
    - benötigter Entry-Point fehlt

    Attributes:
        path: Pfad zur Plugin-Quelle (optional)
        entry: Name des betroffenen Entry-Points (optional)
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        entry: str | None = None,
        error_code: int | ErrorCode = ErrorCode.IO_ERROR,
        **context: Any,
    ) -> None:
        if path:
            context["path"] = path
        if entry:
            context["entry"] = entry
        super().__init__(message, error_code=error_code, context=context)
        self.path = path
        self.entry = entry


class PluginContractError(BridgeError):
    """Vertragsverletzung durch das Plugin.

    Für Fehler bei:
    - kein Ergebnis (None oder Exception im Entry-Point)
    - falsche Dimensionen, Form oder dtype des Ergebnisses
    - ungültige Bandanzahl aus dem Init-Entry-Point

    Attributes:
        entry: Name des Entry-Points, der den Vertrag verletzt hat
        expected: Erwarteter Wert (optional)
        actual: Tatsächlicher Wert (optional)
    """

    def __init__(
        self,
        message: str,
        entry: str | None = None,
        expected: Any = None,
        actual: Any = None,
        error_code: int | ErrorCode = ErrorCode.CONTRACT_VIOLATION,
        **context: Any,
    ) -> None:
        if entry:
            context["entry"] = entry
        if expected is not None:
            context["expected"] = expected
        if actual is not None:
            context["actual"] = actual
        super().__init__(message, error_code=error_code, context=context)
        self.entry = entry
        self.expected = expected
        self.actual = actual


class RuntimeStateError(BridgeError):
    """Lifecycle-Verletzung der Runtime.

    Für Fehler die nur durch falsche Programmreihenfolge im Host
    entstehen:
    - initialize() doppelt aufgerufen
    - Zugriff vor initialize() oder nach finalize()
    - finalize() mit offenen Runtime-Arrays
    """

    def __init__(
        self,
        message: str,
        error_code: int | ErrorCode = ErrorCode.INVALID_STATE,
        **context: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, context=context)


__all__ = [
    "BridgeError",
    "ValidationError",
    "PluginConfigError",
    "PluginContractError",
    "RuntimeStateError",
]
