"""End-to-end invocation tests: register a plugin, run blocks, check outputs."""

from __future__ import annotations

import gc
import logging
import os
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
import pytest

from plugin_sources import (
    BAND_MEAN,
    CALENDAR_RECORDER,
    CONSTANT,
    IDENTITY,
    ONE_DIMENSIONAL,
    PIXEL_MAX,
    RAISES,
    RETURNS_NONE,
    THREE_BANDS,
    TRACKED_ARRAYS,
    WRONG_DTYPE,
    WRONG_ROWS,
)
from pyplugin_bridge import (
    Completion,
    ard_python_plugin,
    output_bands,
    register_python,
    runtime,
    tsa_python_plugin,
)
from pyplugin_bridge.dates import DateRecord
from shared.error_codes import ErrorCode
from shared.exceptions import PluginContractError, RuntimeStateError, ValidationError
from shared.ffi_wrapper import EXIT_FAILURE

NODATA = -9999


def _outputs(nb: int, nc: int, fill: int = 0) -> list[np.ndarray]:
    return [np.full(nc, fill, dtype=np.int16) for _ in range(nb)]


def _run_tsa(config, tsi, dates, nc=10, nt=5, outputs=None):
    if outputs is None:
        outputs = _outputs(output_bands(config, "tsa"), nc)
    status = tsa_python_plugin(tsi, dates, outputs, nc, nt, NODATA, config)
    return status, outputs


class TestTsaPlugin:
    def test_three_band_scenario(self, write_plugin, make_config, tsi_block, dates_2020):
        config = make_config(tsa=write_plugin(THREE_BANDS))
        register_python(config)
        tsi = tsi_block(5, 10)

        status, outputs = _run_tsa(config, tsi, dates_2020)

        assert status == Completion.SUCCESS
        assert len(outputs) == 3
        for b in range(3):
            np.testing.assert_array_equal(outputs[b], tsi[b])
        assert runtime.get_runtime().live_objects == 0

    def test_identity_round_trip(self, write_plugin, make_config, tsi_block, dates_2020):
        config = make_config(tsa=write_plugin(IDENTITY))
        register_python(config)
        tsi = tsi_block(5, 10, seed=7)

        _, outputs = _run_tsa(config, tsi, dates_2020)

        assert len(outputs) == 5
        for t in range(5):
            np.testing.assert_array_equal(outputs[t], tsi[t])

    def test_calendar_and_scalars_reach_plugin(
        self, write_plugin, make_config, tsi_block, dates_2020
    ):
        config = make_config(tsa=write_plugin(CALENDAR_RECORDER), cthread=3)
        descriptors = register_python(config)

        _run_tsa(config, tsi_block(5, 10), dates_2020)

        seen = descriptors["tsa"].module.SEEN
        assert len(seen) == 1
        call = seen[0]
        np.testing.assert_array_equal(call["ce"], [d.ce for d in dates_2020])
        np.testing.assert_array_equal(call["year"], [2020] * 5)
        np.testing.assert_array_equal(call["month"], [1, 2, 3, 4, 5])
        np.testing.assert_array_equal(call["day"], [15] * 5)
        assert call["ce"].dtype == np.int32
        assert call["nodata"] == NODATA
        assert call["nproc"] == 3
        assert call["shape"] == (5, 1, 10)
        assert call["dtype"] == np.int16

    @pytest.mark.parametrize("rows", [2, 4])
    def test_wrong_row_count_is_fatal(
        self, write_plugin, make_config, tsi_block, dates_2020, caplog, rows
    ):
        config = make_config(tsa=write_plugin(WRONG_ROWS.format(rows=rows)))
        register_python(config)
        outputs = _outputs(3, 10, fill=5)

        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(SystemExit) as excinfo:
                _run_tsa(config, tsi_block(5, 10), dates_2020, outputs=outputs)

        assert excinfo.value.code == EXIT_FAILURE
        assert f"Expected 3 elements in 1st dimension, received {rows}" in caplog.text
        for out in outputs:
            np.testing.assert_array_equal(out, np.full(10, 5))
        assert runtime.get_runtime().live_objects == 0

    @pytest.mark.parametrize(
        "source, code",
        [
            (RETURNS_NONE, ErrorCode.NO_RESULT),
            (RAISES, ErrorCode.NO_RESULT),
            (WRONG_DTYPE, ErrorCode.DTYPE_MISMATCH),
            (ONE_DIMENSIONAL, ErrorCode.DIMENSION_MISMATCH),
        ],
    )
    def test_contract_violations_release_everything(
        self, write_plugin, make_config, tsi_block, dates_2020, source, code
    ):
        config = make_config(tsa=write_plugin(source), fatal_exit=False)
        register_python(config)

        with pytest.raises(PluginContractError) as excinfo:
            _run_tsa(config, tsi_block(5, 10), dates_2020)

        assert excinfo.value.error_code == code
        assert runtime.get_runtime().live_objects == 0

    def test_plugin_exception_is_fatal(
        self, write_plugin, make_config, tsi_block, dates_2020, caplog
    ):
        config = make_config(tsa=write_plugin(RAISES))
        register_python(config)

        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(SystemExit):
                _run_tsa(config, tsi_block(5, 10), dates_2020)

        assert "ZeroDivisionError" in caplog.text
        assert "Clean up the python plugin code!" in caplog.text

    def test_cancel_without_outputs(self, write_plugin, make_config, tsi_block, dates_2020):
        config = make_config(tsa=write_plugin(IDENTITY))
        register_python(config)

        status = tsa_python_plugin(tsi_block(5, 10), dates_2020, None, 10, 5, NODATA, config)

        assert status == Completion.CANCEL

    def test_cancel_when_site_disabled(self, make_config, tsi_block, dates_2020):
        config = make_config()
        outputs = _outputs(1, 10, fill=3)

        status, _ = _run_tsa(config, tsi_block(5, 10), dates_2020, outputs=outputs)

        assert status == Completion.CANCEL
        np.testing.assert_array_equal(outputs[0], np.full(10, 3))
        assert not runtime.is_initialized()

    def test_invalid_host_buffers(self, write_plugin, make_config, tsi_block, dates_2020):
        config = make_config(tsa=write_plugin(THREE_BANDS), fatal_exit=False)
        register_python(config)

        with pytest.raises(ValidationError) as excinfo:
            _run_tsa(config, tsi_block(4, 10), dates_2020)
        assert excinfo.value.error_code == ErrorCode.SIZE_MISMATCH

        with pytest.raises(ValidationError):
            _run_tsa(config, tsi_block(5, 10), dates_2020, outputs=_outputs(2, 10))
        assert runtime.get_runtime().live_objects == 0

    def test_enabled_but_never_registered(self, write_plugin, make_config, tsi_block, dates_2020):
        config = make_config(tsa=write_plugin(IDENTITY))
        outputs = _outputs(5, 10)

        with pytest.raises(RuntimeStateError):
            _run_tsa(config, tsi_block(5, 10), dates_2020, outputs=outputs)

        runtime.initialize(pool_backend="thread")
        with pytest.raises(RuntimeStateError, match="never registered"):
            _run_tsa(config, tsi_block(5, 10), dates_2020, outputs=outputs)


class TestPerPixelPlugin:
    @pytest.mark.parametrize("backend", ["thread", "process"])
    def test_block_helper(self, write_plugin, make_config, dates_2020, backend):
        config = make_config(tsa=write_plugin(PIXEL_MAX), pool_backend=backend)
        register_python(config)
        nc = 6
        tsi = [np.arange(nc, dtype=np.int16) * 10 + t for t in range(5)]
        tsi[4][0] = NODATA
        tsi[0][5] = NODATA

        status, outputs = _run_tsa(config, tsi, dates_2020, nc=nc)

        assert status == Completion.SUCCESS
        np.testing.assert_array_equal(outputs[0], [3, 14, 24, 34, 44, 54])
        np.testing.assert_array_equal(outputs[1], [4, 5, 5, 5, 5, 4])


class TestArdPlugin:
    def test_band_mean(self, write_plugin, make_config, dates_2020):
        config = make_config(plg=write_plugin(BAND_MEAN))
        register_python(config)
        nt, nb, nc = 5, 3, 8
        ard = [
            [np.full(nc, 100 * b + 2 * t, dtype=np.int16) for b in range(nb)]
            for t in range(nt)
        ]
        outputs = _outputs(output_bands(config, "plg"), nc)

        status = ard_python_plugin(ard, dates_2020, outputs, nt, nb, nc, NODATA, config)

        assert status == Completion.SUCCESS
        for b in range(nb):
            np.testing.assert_array_equal(outputs[b], np.full(nc, 100 * b + 4))
        assert runtime.get_runtime().live_objects == 0

    def test_cancel_when_only_tsa_enabled(self, write_plugin, make_config, dates_2020):
        config = make_config(tsa=write_plugin(IDENTITY))
        register_python(config)
        ard = [[np.zeros(4, dtype=np.int16)] for _ in range(5)]

        status = ard_python_plugin(
            ard, dates_2020, _outputs(1, 4), 5, 1, 4, NODATA, config
        )

        assert status == Completion.CANCEL


class TestReload:
    def test_source_is_parsed_once_by_default(
        self, write_plugin, make_config, tsi_block, dates_2020
    ):
        path = write_plugin(CONSTANT.format(value=1))
        config = make_config(tsa=path)
        register_python(config)
        path.write_text(CONSTANT.format(value=2), encoding="utf-8")

        _, outputs = _run_tsa(config, tsi_block(5, 10), dates_2020)

        np.testing.assert_array_equal(outputs[0], np.full(10, 1))

    def test_reload_each_call(self, write_plugin, make_config, tsi_block, dates_2020):
        path = write_plugin(CONSTANT.format(value=1))
        config = make_config(tsa=path, reload_each_call=True)
        register_python(config)

        _, first = _run_tsa(config, tsi_block(5, 10), dates_2020)
        path.write_text(CONSTANT.format(value=2), encoding="utf-8")
        _, second = _run_tsa(config, tsi_block(5, 10), dates_2020)

        np.testing.assert_array_equal(first[0], np.full(10, 1))
        np.testing.assert_array_equal(second[0], np.full(10, 2))


@pytest.mark.slow
class TestResources:
    def test_no_objects_outlive_invocations(
        self, write_plugin, make_config, tsi_block, dates_2020
    ):
        config = make_config(tsa=write_plugin(TRACKED_ARRAYS))
        descriptors = register_python(config)
        handle = runtime.get_runtime()
        tsi = tsi_block(5, 10)
        outputs = _outputs(3, 10)

        for _ in range(1000):
            tsa_python_plugin(tsi, dates_2020, outputs, 10, 5, NODATA, config)
        gc.collect()

        refs = descriptors["tsa"].module.REFS
        assert len(refs) == 3000
        assert all(ref() is None for ref in refs)
        assert handle.live_objects == 0
        np.testing.assert_array_equal(outputs[0], tsi[0])
        runtime.finalize()

    def test_concurrent_block_threads(self, write_plugin, make_config, dates_2020):
        config = make_config(tsa=write_plugin(IDENTITY))
        register_python(config)

        def run_block(seed: int) -> bool:
            rng = np.random.default_rng(seed)
            tsi = [rng.integers(0, 1000, size=16, dtype=np.int16) for _ in range(5)]
            outputs = _outputs(5, 16)
            status = tsa_python_plugin(tsi, dates_2020, outputs, 16, 5, NODATA, config)
            return status == Completion.SUCCESS and all(
                np.array_equal(outputs[t], tsi[t]) for t in range(5)
            )

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(run_block, range(64)))

        assert all(results)
        assert runtime.get_runtime().live_objects == 0


def test_dates_must_match_sample_count(write_plugin, make_config, tsi_block):
    config = make_config(tsa=write_plugin(THREE_BANDS), fatal_exit=False)
    register_python(config)
    dates = [DateRecord.from_ymd(2020, 1, 15)]

    with pytest.raises(ValidationError) as excinfo:
        _run_tsa(config, tsi_block(5, 10), dates)
    assert excinfo.value.field == "dates"
    assert runtime.get_runtime().live_objects == 0


_BLOCK_THREAD_SCRIPT = '''
import logging
import threading

import numpy as np

from pyplugin_bridge import build_config, register_python, tsa_python_plugin
from pyplugin_bridge.dates import DateRecord

logging.basicConfig(level=logging.INFO)

config = build_config(
    {{"pool_backend": "thread", "tsa": {{"enabled": True, "file": {plugin!r}}}}}
)
register_python(config)

dates = [DateRecord.from_ymd(2020, month, 15) for month in range(1, 6)]
tsi = [np.zeros(10, dtype=np.int16) for _ in range(5)]
outputs = [np.zeros(10, dtype=np.int16) for _ in range(3)]


def run_block():
    tsa_python_plugin(tsi, dates, outputs, 10, 5, -9999, config)


worker = threading.Thread(target=run_block)
worker.start()
worker.join()
print("host continued after block thread")
'''


class TestFatalTermination:
    def test_fatal_error_on_block_thread_ends_process(self, write_plugin, tmp_path):
        plugin = write_plugin(WRONG_ROWS.format(rows=2))
        script = tmp_path / "host.py"
        script.write_text(_BLOCK_THREAD_SCRIPT.format(plugin=str(plugin)), encoding="utf-8")
        env = {**os.environ, "PYTHONPATH": str(Path(__file__).resolve().parents[1] / "src")}

        completed = subprocess.run(
            [sys.executable, str(script)],
            capture_output=True,
            text=True,
            env=env,
            timeout=120,
        )

        assert completed.returncode == EXIT_FAILURE
        assert "Expected 3 elements in 1st dimension, received 2" in completed.stderr
        assert "host continued after block thread" not in completed.stdout
