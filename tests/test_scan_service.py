"""Scan session lifecycle tests."""

import threading

import numpy as np
import pytest

from qrsuite.codec.decoder import DecodeResult
from qrsuite.codec.encoder import encode
from qrsuite.codec.errors import DecodeError
from qrsuite.services.qr_service import render_matrix
from qrsuite.services.scan_service import ScanSession

PAYLOAD = "WIFI:T:WPA;S:Office;P:secret;H:false;;"
BLANK = np.full((120, 120), 255, dtype=np.uint8)


class FakeSource:
    """Frame source that replays a list of frames and records closes."""

    def __init__(self, frames: list) -> None:
        self.frames = list(frames)
        self.reads = 0
        self.closed = 0

    def read(self):
        self.reads += 1
        # The last frame repeats, like a camera pointed at a still scene.
        if len(self.frames) > 1:
            return self.frames.pop(0)
        return self.frames[0] if self.frames else None

    def close(self) -> None:
        self.closed += 1


class FailingSource(FakeSource):
    def read(self):
        raise OSError("camera unplugged")


def _qr_frame() -> np.ndarray:
    return np.asarray(render_matrix(encode(PAYLOAD), box_size=4).convert("L"))


def test_scan_once_reports_result() -> None:
    """Ensure a single scan decodes a frame and records the result."""
    session = ScanSession(FakeSource([_qr_frame()]), interval=0)
    result = session.scan_once()

    assert result is not None and result.ok
    assert session.result is not None
    assert session.result.text == PAYLOAD
    assert session.frames_scanned == 1


def test_scan_once_without_frame() -> None:
    """Ensure a source with no frame ready yields None without counting."""
    session = ScanSession(FakeSource([None]), interval=0)
    assert session.scan_once() is None
    assert session.frames_scanned == 0


def test_scan_once_records_failure() -> None:
    """Ensure failed decodes are kept as the last error."""
    session = ScanSession(FakeSource([BLANK]), interval=0)
    result = session.scan_once()
    assert result is not None and not result.ok
    assert session.last_error is not None
    assert session.last_error.error is DecodeError.NOT_FOUND
    assert session.result is None


def test_session_stops_after_success() -> None:
    """Ensure polling ends and the source is released once a frame decodes."""
    results: list[DecodeResult] = []
    source = FakeSource([BLANK, BLANK, _qr_frame()])
    session = ScanSession(source, interval=0.01, on_result=results.append).start()

    result = session.wait(timeout=10)
    assert result is not None
    assert result.text == PAYLOAD
    assert [item.text for item in results] == [PAYLOAD]
    assert session.frames_scanned == 3
    session.stop()
    assert source.closed == 1
    assert session.released
    assert not session.running


def test_stop_releases_source_once() -> None:
    """Ensure stop is idempotent and closes the source exactly once."""
    source = FakeSource([BLANK])
    session = ScanSession(source, interval=0.01).start()
    session.stop()
    session.stop()

    assert source.closed == 1
    assert not session.running
    assert session.wait(timeout=1) is None


def test_context_manager_releases_source() -> None:
    """Ensure leaving the block always releases the source."""
    source = FakeSource([BLANK])
    with ScanSession(source, interval=0.01) as session:
        session.start()
    assert source.closed == 1
    assert session.released


def test_context_manager_releases_without_start() -> None:
    """Ensure a session that never started still releases its source."""
    source = FakeSource([BLANK])
    with ScanSession(source):
        pass
    assert source.closed == 1


def test_source_failure_ends_session() -> None:
    """Ensure a failing source is logged, released and ends the session."""
    source = FailingSource([])
    session = ScanSession(source, interval=0).start()

    assert session.wait(timeout=5) is None
    session.stop()
    assert source.closed == 1
    assert session.result is None


def test_start_twice_raises() -> None:
    """Ensure a session cannot be restarted."""
    source = FakeSource([BLANK])
    session = ScanSession(source, interval=0.01)
    session.start()
    try:
        with pytest.raises(RuntimeError):
            session.start()
    finally:
        session.stop()

    with pytest.raises(RuntimeError):
        session.start()


def test_one_decode_in_flight() -> None:
    """Ensure frames are decoded strictly one after another."""
    active = 0
    peak = 0
    lock = threading.Lock()

    def slow_decoder(frame: np.ndarray) -> DecodeResult:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        threading.Event().wait(0.01)
        with lock:
            active -= 1
        return DecodeResult.failure(DecodeError.NOT_FOUND)

    source = FakeSource([BLANK])
    session = ScanSession(source, interval=0, decoder=slow_decoder).start()
    threading.Event().wait(0.2)
    session.stop()

    assert session.frames_scanned > 1
    assert peak == 1


def test_stop_waits_for_decode_in_progress() -> None:
    """Ensure stop joins a slow decode and drops its late result."""
    decoding = threading.Event()
    results: list[DecodeResult] = []

    def slow_decoder(frame: np.ndarray) -> DecodeResult:
        decoding.set()
        threading.Event().wait(0.5)
        return DecodeResult(text="late")

    source = FakeSource([BLANK])
    session = ScanSession(
        source, interval=0, on_result=results.append, decoder=slow_decoder
    ).start()
    assert decoding.wait(timeout=5)
    session.stop()

    assert not session.running
    assert source.closed == 1
    assert results == []
    assert session.result is None
    assert session.wait(timeout=0) is None


def test_stop_from_result_callback() -> None:
    """Ensure a callback may stop its own session without deadlocking."""
    source = FakeSource([_qr_frame()])
    holder: list[ScanSession] = []

    def on_result(result: DecodeResult) -> None:
        holder[0].stop()

    session = ScanSession(source, interval=0, on_result=on_result)
    holder.append(session)
    session.start()

    assert session.wait(timeout=10) is not None
    session.stop()
    assert source.closed == 1


def test_negative_interval_rejected() -> None:
    """Ensure a negative polling interval is rejected."""
    with pytest.raises(ValueError):
        ScanSession(FakeSource([BLANK]), interval=-1)
