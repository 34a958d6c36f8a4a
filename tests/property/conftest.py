# -*- coding: utf-8 -*-
"""
Hypothesis Konfiguration und gemeinsame Strategien für Property-Tests.

Profile per Umgebung wählbar:

    pytest tests/property --hypothesis-profile=ci
"""
from __future__ import annotations

from datetime import date
from typing import List

import numpy as np
from hypothesis import HealthCheck, Verbosity, settings
from hypothesis import strategies as st
from hypothesis.extra.numpy import arrays

# ══════════════════════════════════════════════════════════════════════════════
# HYPOTHESIS PROFILE CONFIGURATION
# ══════════════════════════════════════════════════════════════════════════════

settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
    suppress_health_check=[
        HealthCheck.too_slow,
        HealthCheck.data_too_large,
    ],
)

settings.register_profile(
    "ci",
    max_examples=500,
    verbosity=Verbosity.quiet,
    deadline=None,
    suppress_health_check=[
        HealthCheck.too_slow,
        HealthCheck.data_too_large,
    ],
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.load_profile("default")


# ══════════════════════════════════════════════════════════════════════════════
# CUSTOM STRATEGIES FOR BLOCK DATA
# ══════════════════════════════════════════════════════════════════════════════

int16_values = st.integers(min_value=-32768, max_value=32767)


@st.composite
def block_dims(
    draw: st.DrawFn,
    max_nt: int = 12,
    max_nb: int = 6,
    max_nc: int = 64,
) -> tuple[int, int, int]:
    """Strategy für (nt, nb, nc) eines Blocks."""
    nt = draw(st.integers(min_value=1, max_value=max_nt))
    nb = draw(st.integers(min_value=1, max_value=max_nb))
    nc = draw(st.integers(min_value=1, max_value=max_nc))
    return nt, nb, nc


@st.composite
def ard_buffers(draw: st.DrawFn) -> tuple[List[List[np.ndarray]], int, int, int]:
    """Strategy für ARD-Eingaben: nt Samples mit je nb int16-Puffern à nc Zellen."""
    nt, nb, nc = draw(block_dims())
    ard = [
        [draw(arrays(np.int16, nc, elements=int16_values)) for _ in range(nb)]
        for _ in range(nt)
    ]
    return ard, nt, nb, nc


@st.composite
def int16_results(draw: st.DrawFn, max_nb: int = 8, max_nc: int = 64) -> np.ndarray:
    """Strategy für Plugin-Ergebnisse (nb, nc) im Vertrag."""
    nb = draw(st.integers(min_value=1, max_value=max_nb))
    nc = draw(st.integers(min_value=1, max_value=max_nc))
    return draw(arrays(np.int16, (nb, nc), elements=int16_values))


calendar_dates = st.dates(min_value=date(1984, 1, 1), max_value=date(2100, 12, 31))
