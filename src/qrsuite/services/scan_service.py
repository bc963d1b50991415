"""Polling scan session that feeds captured frames to the decoder."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

import numpy as np
from PIL import Image

from qrsuite.codec.decoder import DecodeResult, decode
from qrsuite.constants import DEFAULT_SCAN_INTERVAL

logger = logging.getLogger(__name__)

Frame = Image.Image | np.ndarray


class FrameSource(Protocol):
    """Anything that hands out frames and can be released (e.g. a camera)."""

    def read(self) -> Frame | None: ...

    def close(self) -> None: ...


class ScanSession:
    """Poll a frame source until a symbol decodes or the session is stopped.

    Frames are decoded one at a time on a single background thread, so at
    most one decode is in flight. The source is closed exactly once, when a
    scan succeeds, when the source fails, or on ``stop()``; using the session
    as a context manager guarantees that release.
    """

    def __init__(
        self,
        source: FrameSource,
        interval: float = DEFAULT_SCAN_INTERVAL,
        on_result: Callable[[DecodeResult], None] | None = None,
        decoder: Callable[[Frame], DecodeResult] = decode,
    ) -> None:
        if interval < 0:
            raise ValueError("Scan interval must not be negative.")
        self._source = source
        self._interval = interval
        self._on_result = on_result
        self._decoder = decoder
        self._stop_event = threading.Event()
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._released = False
        self.result: DecodeResult | None = None
        self.last_error: DecodeResult | None = None
        self.frames_scanned = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def released(self) -> bool:
        return self._released

    def scan_once(self) -> DecodeResult | None:
        """Read and decode a single frame.

        Returns ``None`` when no frame was ready or the session was stopped
        while the frame was being decoded.
        """
        frame = self._source.read()
        if frame is None:
            return None
        self.frames_scanned += 1
        result = self._decoder(frame)
        if self._stop_event.is_set():
            # Stopped while decoding; the session no longer reports results.
            return None
        if result.ok:
            self.result = result
            if self._on_result is not None:
                self._on_result(result)
        else:
            self.last_error = result
        return result

    def start(self) -> ScanSession:
        with self._lock:
            if self._thread is not None or self._released:
                raise RuntimeError("Scan session can only be started once.")
            self._thread = threading.Thread(target=self._run, name="qrsuite-scan", daemon=True)
            self._thread.start()
        logger.info("Scan session started (interval %.2fs)", self._interval)
        return self

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                result = self.scan_once()
                if result is not None and result.ok:
                    logger.info("Symbol decoded after %d frames", self.frames_scanned)
                    break
                self._stop_event.wait(self._interval)
        except Exception:
            logger.exception("Frame source failed; ending scan session")
        finally:
            self._release()
            self._done.set()

    def _release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._source.close()

    def stop(self) -> None:
        """Stop polling, wait for the worker and release the source.

        A running worker finishes its current read or decode and releases the
        source itself; the source is only closed here when no worker ran.
        """
        self._stop_event.set()
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        if thread is None:
            self._release()
            self._done.set()
        logger.info("Scan session stopped after %d frames", self.frames_scanned)

    def wait(self, timeout: float | None = None) -> DecodeResult | None:
        """Block until the session ends; returns the successful result, if any."""
        self._done.wait(timeout)
        return self.result

    def __enter__(self) -> ScanSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
