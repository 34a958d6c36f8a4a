"""Error Codes für die Plugin-Bridge.

Diese Error-Codes werden an der Grenze zwischen Host-Pipeline und
Plugin-Runtime verwendet. Sie landen in Diagnosen (Log, ``to_ffi_dict``)
und entscheiden, ob ein Fehler den Prozess beendet.

Code-Bereiche sind stabil und dürfen nicht umnummeriert werden.
"""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Error Codes der Plugin-Bridge.

    Code-Bereiche:
        0:          Erfolg (kein Fehler)
        1000-1999:  Validation Errors (Host-Buffer, Config)
        3000-3999:  I/O Errors (Plugin-Quelle nicht lesbar)
        4000-4999:  Internal Errors (Lifecycle-Verletzungen, Bugs)
        5000-5999:  Contract Errors (Plugin hält Vertrag nicht ein)
    """

    # =========================================================================
    # Success (0)
    # =========================================================================
    OK = 0

    # =========================================================================
    # Validation Errors (1000-1999)
    # =========================================================================
    VALIDATION_FAILED = 1000
    """Allgemeiner Validierungsfehler."""

    INVALID_ARGUMENT = 1001
    """Ungültiges Argument oder ungültiger Config-Wert."""

    TYPE_MISMATCH = 1004
    """Host-Buffer hat falschen dtype (z.B. float statt int16)."""

    MISSING_ENTRY_POINT = 1008
    """Benötigter Entry-Point fehlt im Plugin-Namespace."""

    SIZE_MISMATCH = 1011
    """Host-Buffer passt nicht zu nt/nb/nc."""

    # =========================================================================
    # I/O Errors (3000-3999)
    # =========================================================================
    IO_ERROR = 3000
    """Allgemeiner I/O-Fehler."""

    FILE_NOT_FOUND = 3001
    """Plugin-Quelldatei nicht gefunden oder nicht lesbar."""

    PARSE_FAILED = 3004
    """Plugin-Quelle konnte nicht geparst oder ausgeführt werden."""

    # =========================================================================
    # Internal Errors (4000-4999)
    # =========================================================================
    INTERNAL_ERROR = 4000
    """Allgemeiner interner Fehler (Bug)."""

    INVALID_STATE = 4001
    """Runtime in ungültigem Zustand (doppelt initialisiert, nicht initialisiert)."""

    LEAKED_REFERENCES = 4002
    """Finalize mit noch offenen Runtime-Arrays."""

    # =========================================================================
    # Contract Errors (5000-5999)
    # =========================================================================
    CONTRACT_VIOLATION = 5000
    """Allgemeine Vertragsverletzung durch das Plugin."""

    NO_RESULT = 5001
    """Entry-Point hat kein Ergebnis geliefert (None oder Exception)."""

    DIMENSION_MISMATCH = 5002
    """Ergebnis hat falsche Anzahl Dimensionen."""

    SHAPE_MISMATCH = 5003
    """Ergebnis hat falsche Form (Bänder oder Pixel)."""

    DTYPE_MISMATCH = 5004
    """Ergebnis hat falschen dtype (int16 erwartet)."""

    INVALID_BAND_COUNT = 5005
    """Init-Entry-Point liefert keine gültige Bandanzahl."""


def is_fatal(code: ErrorCode | int) -> bool:
    """Prüft ob ein Fehler den Prozess beenden muss.

    Konfigurationsfehler (Validation, I/O) und Vertragsverletzungen
    haben keinen sicheren Fallback: ein halb geladenes Plugin oder ein
    falsch geformtes Ergebnis kann nicht in die Output-Buffer kopiert werden.

    Args:
        code: Error-Code

    Returns:
        True wenn der Fehler fatal ist
    """
    code_int = int(code)

    if code_int == 0:
        return False

    # Internal Errors sind Programmierfehler im Host, keine Plugin-Fehler
    if 4000 <= code_int < 5000:
        return False

    return True


def error_category(code: ErrorCode | int) -> str:
    """Gibt die Kategorie eines Error-Codes zurück.

    Args:
        code: Error-Code

    Returns:
        Kategorie-Name als String
    """
    code_int = int(code)

    if code_int == 0:
        return "OK"
    elif 1000 <= code_int < 2000:
        return "VALIDATION"
    elif 3000 <= code_int < 4000:
        return "IO"
    elif 4000 <= code_int < 5000:
        return "INTERNAL"
    elif 5000 <= code_int < 6000:
        return "CONTRACT"
    else:
        return "UNKNOWN"


__all__ = [
    "ErrorCode",
    "is_fatal",
    "error_category",
]
