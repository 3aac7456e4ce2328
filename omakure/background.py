"""
One-shot background computation for UI-auxiliary values.

Each `start` spawns a single daemon worker and hands it a fresh channel; the
previous channel is dropped, so a late result for an older key is never seen.
The main loop calls `poll` once per tick and never blocks.
"""
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar, Union

from omakure.log_utils import get_logger

T = TypeVar("T")

log = get_logger("background")


@dataclass
class TaskResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Pending:
    pass


@dataclass
class Delivered(Generic[T]):
    result: TaskResult[T]


class Disconnected:
    pass


PollOutcome = Union[Pending, Delivered, Disconnected]


class BackgroundLoader(Generic[T]):
    def __init__(self, name: str = "loader") -> None:
        self.name = name
        self.key: Optional[Hashable] = None
        self._channel: Optional["queue.Queue[TaskResult[T]]"] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def loading(self) -> bool:
        return self._channel is not None

    def start(self, key: Hashable, fn: Callable[[], T]) -> None:
        channel: "queue.Queue[TaskResult[T]]" = queue.Queue(maxsize=1)

        def _worker() -> None:
            try:
                result = TaskResult(value=fn())
            except Exception as exc:
                result = TaskResult(error=exc)
            channel.put_nowait(result)

        self.key = key
        self._channel = channel
        self._thread = threading.Thread(target=_worker, name=f"omakure-{self.name}", daemon=True)
        self._thread.start()

    def poll(self) -> Optional[PollOutcome]:
        """None when nothing is in flight; otherwise the state of the current request."""
        channel = self._channel
        if channel is None:
            return None
        try:
            result = channel.get_nowait()
        except queue.Empty:
            if self._thread is not None and self._thread.is_alive():
                return Pending()
            # worker may have delivered between the two checks
            try:
                result = channel.get_nowait()
            except queue.Empty:
                self._drop()
                log.warning("background %s worker exited without result key=%s", self.name, self.key)
                return Disconnected()
        self._drop()
        return Delivered(result)

    def wait(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _drop(self) -> None:
        self._channel = None
        self._thread = None
