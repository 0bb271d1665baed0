"""Progress reporting for flash attempts.

Percentages follow a fixed contract: every phase except Data reports a fixed
value, while Data climbs from 40 to 85 in proportion to the chunks sent.
``compute_progress`` is the pure mapping; ``ProgressTracker`` keeps the
current snapshot and fans it out to delegates (CLI bar, callbacks, ...).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from tqdm import tqdm


logger = logging.getLogger(__name__)

DATA_PHASE_START = 40
DATA_PHASE_SPAN = 45


class FlashPhase(Enum):
    """Steps of a flash attempt, plus the idle and failed resting points."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    SYNC = "sync"
    IDENTIFY = "identify"
    BEGIN = "begin"
    DATA = "data"
    END = "end"
    VERIFY = "verify"
    FAILED = "failed"


# (percentage, status) reported when a phase completes
PHASE_PROGRESS = {
    FlashPhase.IDLE: (0, "idle"),
    FlashPhase.INITIALIZING: (0, "initializing"),
    FlashPhase.SYNC: (15, "synced"),
    FlashPhase.IDENTIFY: (25, "identifying"),
    FlashPhase.BEGIN: (40, "erasing"),
    FlashPhase.DATA: (85, "writing"),
    FlashPhase.END: (95, "finalizing"),
    FlashPhase.VERIFY: (100, "complete"),
    FlashPhase.FAILED: (0, "failed"),
}


@dataclass(frozen=True)
class Progress:
    """Snapshot of a flash attempt."""
    bytes_done: int = 0
    bytes_total: int = 0
    percentage: int = 0
    status: str = "idle"


IDLE_PROGRESS = Progress()


def data_phase_percentage(chunk_index: int, total_chunks: int) -> int:
    """Percentage after ``chunk_index`` of ``total_chunks`` chunks were sent.

    ``40 + round(chunk_index / total_chunks * 45)`` with halves rounded up.
    """
    if total_chunks <= 0:
        raise ValueError("total_chunks must be greater than 0")
    if not 0 <= chunk_index <= total_chunks:
        raise ValueError(f"chunk_index {chunk_index} outside 0..{total_chunks}")
    # floor(x + 0.5) in integer arithmetic
    step = (2 * chunk_index * DATA_PHASE_SPAN + total_chunks) // (2 * total_chunks)
    return DATA_PHASE_START + step


def compute_progress(
    phase: FlashPhase,
    bytes_done: int,
    bytes_total: int,
    chunk_index: Optional[int] = None,
    total_chunks: Optional[int] = None,
) -> Progress:
    """Map a phase and position to a progress snapshot.

    Args:
        phase: Phase just reached
        bytes_done: Bytes written so far
        bytes_total: Image length
        chunk_index: 1-based chunk just sent (Data phase only)
        total_chunks: Chunk count of the image (Data phase only)

    Returns:
        Progress: The snapshot.

    Raises:
        ValueError: If ``bytes_done`` lies outside ``0..bytes_total``.
    """
    if bytes_total < 0 or not 0 <= bytes_done <= bytes_total:
        raise ValueError(f"bytes_done {bytes_done} outside 0..{bytes_total}")

    if phase is FlashPhase.DATA and chunk_index is not None:
        percentage = data_phase_percentage(chunk_index, total_chunks or 0)
        status = f"writing ({chunk_index}/{total_chunks})"
    else:
        percentage, status = PHASE_PROGRESS[phase]

    return Progress(
        bytes_done=bytes_done,
        bytes_total=bytes_total,
        percentage=percentage,
        status=status,
    )


class ProgressDelegate(ABC):
    """Receiver of progress snapshots (CLI, GUI, logging, ...)."""

    @abstractmethod
    def on_start(self, total_size: int, operation: str = "Flashing") -> None:
        """Called when an attempt starts."""
        pass

    @abstractmethod
    def on_update(self, progress: Progress) -> None:
        """Called for every new snapshot."""
        pass

    @abstractmethod
    def on_end(self, success: bool, message: str = "") -> None:
        """Called when the attempt completes or fails."""
        pass


class ProgressPrinter(ProgressDelegate):
    """Terminal progress bar backed by tqdm."""

    def __init__(self, description: str = "Flash Progress"):
        self.description = description
        self.pbar: Optional[tqdm] = None

    def on_start(self, total_size: int, operation: str = "Flashing") -> None:
        self.pbar = tqdm(
            total=100,
            desc=self.description,
            unit="%",
            bar_format="{l_bar}{bar}| {n:.0f}/{total:.0f}% [{elapsed}<{remaining}]",
            dynamic_ncols=True,
        )
        self.pbar.set_description(operation)

    def on_update(self, progress: Progress) -> None:
        if self.pbar is None:
            return
        delta = progress.percentage - self.pbar.n
        if delta > 0:
            self.pbar.update(delta)
        self.pbar.set_description(progress.status)

    def on_end(self, success: bool, message: str = "") -> None:
        if self.pbar is None:
            return
        prefix = "✓" if success else "✗"
        self.pbar.set_description(f"{prefix} {message}" if message else prefix)
        self.pbar.close()
        self.pbar = None


class CallbackProgressDelegate(ProgressDelegate):
    """Delegate forwarding to optional plain callbacks."""

    def __init__(
        self,
        on_start_callback: Optional[Callable[[int, str], None]] = None,
        on_update_callback: Optional[Callable[[Progress], None]] = None,
        on_end_callback: Optional[Callable[[bool, str], None]] = None,
    ):
        self.on_start_callback = on_start_callback
        self.on_update_callback = on_update_callback
        self.on_end_callback = on_end_callback

    def on_start(self, total_size: int, operation: str = "Flashing") -> None:
        if self.on_start_callback:
            self.on_start_callback(total_size, operation)

    def on_update(self, progress: Progress) -> None:
        if self.on_update_callback:
            self.on_update_callback(progress)

    def on_end(self, success: bool, message: str = "") -> None:
        if self.on_end_callback:
            self.on_end_callback(success, message)


class SilentProgressDelegate(ProgressDelegate):
    """Delegate that reports nothing."""

    def on_start(self, total_size: int, operation: str = "Flashing") -> None:
        pass

    def on_update(self, progress: Progress) -> None:
        pass

    def on_end(self, success: bool, message: str = "") -> None:
        pass


class ProgressTracker:
    """Holds the current snapshot of one session and fans it out.

    The percentage never decreases within an attempt; only ``start`` (a new
    attempt), ``fail`` and ``reset`` bring it back to 0.
    """

    def __init__(self, delegates: Optional[List[ProgressDelegate]] = None):
        self.delegates: List[ProgressDelegate] = list(delegates or [])
        self._current = IDLE_PROGRESS
        self._on_update: Optional[Callable[[Progress], None]] = None

    @property
    def current(self) -> Progress:
        return self._current

    def add_delegate(self, delegate: ProgressDelegate) -> None:
        if delegate not in self.delegates:
            self.delegates.append(delegate)

    def remove_delegate(self, delegate: ProgressDelegate) -> None:
        if delegate in self.delegates:
            self.delegates.remove(delegate)

    def set_update_callback(self, callback: Optional[Callable[[Progress], None]]) -> None:
        """Set callback invoked after every snapshot change."""
        self._on_update = callback

    def start(self, bytes_total: int, operation: str = "Flashing") -> Progress:
        """Begin a new attempt at 0%."""
        for delegate in self.delegates:
            try:
                delegate.on_start(bytes_total, operation)
            except Exception as e:
                logger.warning(f"Progress delegate error on start: {e}")
        return self._publish(compute_progress(FlashPhase.INITIALIZING, 0, bytes_total))

    def advance(
        self,
        phase: FlashPhase,
        bytes_done: Optional[int] = None,
        chunk_index: Optional[int] = None,
        total_chunks: Optional[int] = None,
    ) -> Progress:
        """Record that ``phase`` was reached."""
        if bytes_done is None:
            bytes_done = self._current.bytes_done
        progress = compute_progress(
            phase,
            bytes_done,
            self._current.bytes_total,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
        )
        if progress.percentage < self._current.percentage:
            logger.warning(
                f"Ignoring progress regression {self._current.percentage}% -> "
                f"{progress.percentage}% ({progress.status})"
            )
            progress = Progress(
                bytes_done=progress.bytes_done,
                bytes_total=progress.bytes_total,
                percentage=self._current.percentage,
                status=progress.status,
            )
        return self._publish(progress)

    def fail(self, message: str = "") -> Progress:
        """Drop to 0% with status ``failed``; bytes already sent are kept."""
        progress = compute_progress(
            FlashPhase.FAILED, self._current.bytes_done, self._current.bytes_total
        )
        self._publish(progress)
        self.finish(False, message)
        return progress

    def finish(self, success: bool, message: str = "") -> None:
        for delegate in self.delegates:
            try:
                delegate.on_end(success, message)
            except Exception as e:
                logger.warning(f"Progress delegate error on finish: {e}")

    def reset(self) -> Progress:
        return self._publish(IDLE_PROGRESS)

    def _publish(self, progress: Progress) -> Progress:
        if progress == self._current:
            return progress
        self._current = progress

        for delegate in self.delegates:
            try:
                delegate.on_update(progress)
            except Exception as e:
                logger.warning(f"Progress delegate error on update: {e}")

        if self._on_update:
            try:
                self._on_update(progress)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}")
        return progress
