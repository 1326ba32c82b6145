"""
Playback clock interface and an in-memory player.

The scheduler only needs the current position, the duration, a way to seek,
and a position-changed notification. SimulatedPlayer provides those without a
real video element; the CLI uses it to replay a session.
"""

from typing import Callable, Protocol

Listener = Callable[[], None]


class PlaybackClock(Protocol):
    @property
    def position(self) -> float: ...

    @property
    def duration(self) -> float: ...

    def seek(self, position: float) -> None: ...

    def subscribe(self, listener: Listener) -> None: ...

    def unsubscribe(self, listener: Listener) -> None: ...


class SimulatedPlayer:
    def __init__(self, duration: float, position: float = 0.0) -> None:
        self._duration = float(duration)
        self._position = float(position)
        self._listeners: list[Listener] = []
        self.seeks: list[float] = []

    @property
    def position(self) -> float:
        return self._position

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def seek(self, position: float) -> None:
        self._position = min(max(float(position), 0.0), self._duration)
        self.seeks.append(self._position)

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def advance_to(self, position: float) -> None:
        """Play forward to position and fire a position-changed notification."""
        self._position = min(max(float(position), 0.0), self._duration)
        for listener in list(self._listeners):
            listener()
