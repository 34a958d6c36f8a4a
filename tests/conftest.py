from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Any, Callable

import numpy as np
import pytest

# Ensure src/ is importable without an editable install.
_SRC = Path(__file__).resolve().parents[1] / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from pyplugin_bridge import runtime
from pyplugin_bridge.config import BridgeConfig, build_config
from pyplugin_bridge.dates import DateRecord
from shared.exceptions import RuntimeStateError


@pytest.fixture(autouse=True)
def _clean_runtime():
    """Leave no runtime behind, even when a test failed half-way."""

    yield
    if runtime.is_initialized():
        try:
            runtime.finalize()
        except RuntimeStateError:
            runtime._HANDLE = None


@pytest.fixture
def write_plugin(tmp_path: Path) -> Callable[..., Path]:
    """Factory fixture writing a plugin source to a temporary file."""

    def _write(source: str, name: str = "plugin.py") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_config() -> Callable[..., BridgeConfig]:
    """Factory fixture for bridge configs with thread pools by default."""

    def _create(
        tsa: Path | None = None,
        plg: Path | None = None,
        **kwargs: Any,
    ) -> BridgeConfig:
        data: dict[str, Any] = {"pool_backend": "thread", "cthread": 2}
        if tsa is not None:
            data["tsa"] = {"enabled": True, "file": str(tsa)}
        if plg is not None:
            data["plg"] = {"enabled": True, "file": str(plg)}
        data.update(kwargs)
        return build_config(data)

    return _create


@pytest.fixture
def dates_2020() -> list[DateRecord]:
    """The 15th of January to May 2020."""

    return [DateRecord.from_ymd(2020, month, 15) for month in range(1, 6)]


@pytest.fixture
def tsi_block() -> Callable[[int, int], list[np.ndarray]]:
    """Factory for ``nt`` interpolated int16 samples of ``nc`` cells."""

    def _create(nt: int, nc: int, seed: int = 42) -> list[np.ndarray]:
        rng = np.random.default_rng(seed)
        return [
            rng.integers(-10000, 10000, size=nc, dtype=np.int16) for _ in range(nt)
        ]

    return _create
