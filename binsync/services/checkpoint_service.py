"""
Checkpoint store for binsync

Persists the reader's binlog position to a file on a fixed interval and loads
it at startup. Sampling is periodic, so a restart replays every event since
the last successful tick.
"""

import os
import tempfile
import threading
from typing import Callable, Optional

import structlog

from ..exceptions import CheckpointError
from ..models.config import DEFAULT_CHECKPOINT_INTERVAL
from ..models.position import BinlogPosition
from .metrics_service import MetricsService


class CheckpointStore:
    """Reads and atomically overwrites one checkpoint file"""

    def __init__(self, path: str):
        if not path:
            raise ValueError("Checkpoint path is required")
        self.path = path
        self.logger = structlog.get_logger()

    def ensure_directory(self) -> None:
        """Create the containing directory; an existing one is fine"""
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise CheckpointError(f"Failed to create directory for checkpoint file {self.path}: {e}")

    def load(self) -> Optional[BinlogPosition]:
        """
        Load the saved position

        Returns None when there is no usable checkpoint: missing, empty,
        unreadable or malformed files are logged, never raised.
        """
        try:
            self.ensure_directory()
        except CheckpointError as e:
            self.logger.error("Cannot prepare checkpoint directory", path=self.path, error=str(e))
            return None

        try:
            with open(self.path, 'rb') as f:
                data = f.read()
        except FileNotFoundError:
            self.logger.info("No previous checkpoint file", path=self.path)
            return None
        except OSError as e:
            self.logger.error("Failed to read checkpoint file", path=self.path, error=str(e))
            return None

        if len(data.strip()) <= 1:
            self.logger.info("Checkpoint file is empty", path=self.path)
            return None

        try:
            position = BinlogPosition.from_bytes(data)
        except CheckpointError as e:
            self.logger.error("Failed to parse checkpoint file, ignoring it", path=self.path, error=str(e))
            return None

        self.logger.info("Loaded checkpoint", path=self.path, position=str(position))
        return position

    def save(self, position: BinlogPosition) -> None:
        """
        Replace the checkpoint file with the given position

        The new content is written to a sibling temporary file and renamed over
        the old one, so a failed write leaves the previous checkpoint intact.

        Raises:
            CheckpointError: if the position cannot be serialized or written
        """
        try:
            data = position.to_bytes()
        except (TypeError, ValueError) as e:
            raise CheckpointError(f"Failed to serialize position {position}: {e}")

        self.ensure_directory()
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.checkpoint-', dir=directory)
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise CheckpointError(f"Failed to write checkpoint to {self.path}: {e}")
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)


class CheckpointTicker:
    """Background thread that samples a position and saves it every interval"""

    def __init__(self, store: CheckpointStore,
                 position_source: Callable[[], Optional[BinlogPosition]],
                 stop_event: threading.Event,
                 interval: float = DEFAULT_CHECKPOINT_INTERVAL,
                 metrics_service: Optional[MetricsService] = None):
        if interval <= 0:
            raise ValueError("Checkpoint interval must be positive")
        self.store = store
        self.position_source = position_source
        self.stop_event = stop_event
        self.interval = interval
        self.metrics_service = metrics_service
        self.logger = structlog.get_logger()

        self.error: Optional[BaseException] = None
        self.last_saved: Optional[BinlogPosition] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            self.logger.warning("Checkpoint ticker already running")
            return
        self._thread = threading.Thread(target=self._run, name="checkpoint_ticker", daemon=True)
        self._thread.start()
        self.logger.info("Checkpoint ticker started", path=self.store.path, interval=self.interval)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> bool:
        """Save the current position once; False if nothing was written"""
        position = self.position_source()
        if position is None:
            self.logger.debug("No binlog position to checkpoint yet")
            return False

        try:
            self.store.save(position)
        except CheckpointError as e:
            self.logger.error("Checkpoint write failed, keeping previous checkpoint",
                              path=self.store.path, position=str(position), error=str(e))
            if self.metrics_service:
                self.metrics_service.record_checkpoint(position, success=False)
            return False

        if position != self.last_saved:
            self.logger.debug("Checkpoint saved", path=self.store.path, position=str(position))
        self.last_saved = position
        if self.metrics_service:
            self.metrics_service.record_checkpoint(position, success=True)
        return True

    def _run(self) -> None:
        try:
            while not self.stop_event.wait(self.interval):
                self.tick()
        except Exception as e:
            self.error = e
            self.logger.error("Checkpoint ticker crashed, positions are no longer saved",
                              path=self.store.path, error_type=type(e).__name__, error=str(e))
        finally:
            self.logger.info("Checkpoint ticker stopped", last_saved=str(self.last_saved) if self.last_saved else None)
