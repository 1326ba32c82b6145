"""
Auto-skip scheduler.

Driven by the player's position-changed notification, throttled to one check
per second of wall-clock time. Each active range goes through
unseen -> notified -> skipped, tracked by a "start-end" instance key. Editing
a segment changes its key, so the edited range is offered again.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .player import PlaybackClock
from .reconcile import format_seconds

logger = logging.getLogger(__name__)

CHECK_INTERVAL = 1.0
NOTICE_LEAD = 3.0
NOTICE_LIFETIME = 5.0
SKIP_OVERSHOOT = 0.1
JUMP_BACK_WINDOW = 1.0
JUMP_BACK_MARGIN = 1.0
MANUAL_SKIP_LEAD = 10.0


def range_key(start: float, end: float) -> str:
    return f"{start}-{end}"


@dataclass(frozen=True)
class SkipNotice:
    """An "ad coming up, click to keep it" prompt for one range instance."""

    key: str
    start: float
    end: float
    shown_at: float
    message: str = "Skipping ad soon (click to cancel)"


class AutoSkipScheduler:
    def __init__(
        self,
        player: PlaybackClock,
        ranges: Callable[[], list[list[float]]],
        *,
        clock: Callable[[], float] = time.monotonic,
        on_notice: Callable[[SkipNotice], None] | None = None,
    ) -> None:
        self.player = player
        self.ranges = ranges
        self.clock = clock
        self.on_notice = on_notice
        self.skipped: set[str] = set()
        self.notified: set[str] = set()
        self.notice: SkipNotice | None = None
        self._last_check: float | None = None
        self._subscribed = False

    @property
    def running(self) -> bool:
        return self._subscribed

    def setup(self) -> None:
        """(Re)start scheduling; any previous state is discarded first."""
        self.teardown()
        self.player.subscribe(self.on_position_changed)
        self._subscribed = True
        logger.info("auto-skip listener attached")

    def teardown(self) -> None:
        if self._subscribed:
            self.player.unsubscribe(self.on_position_changed)
            self._subscribed = False
            logger.info("auto-skip listener detached")
        self.skipped.clear()
        self.notified.clear()
        self.notice = None
        self._last_check = None

    def on_position_changed(self) -> None:
        now = self.clock()
        if self._last_check is not None and now - self._last_check < CHECK_INTERVAL:
            return
        self._last_check = now
        self.tick()

    def tick(self) -> str | None:
        """Act on the first range that needs it. Returns "notified", "skipped" or None."""
        now = self.clock()
        if self.notice is not None and now - self.notice.shown_at >= NOTICE_LIFETIME:
            self.notice = None

        position = self.player.position
        for start, end in sorted(self.ranges(), key=lambda r: (r[0], r[1])):
            key = range_key(start, end)

            lead = start - position
            if 0 < lead <= NOTICE_LEAD and key not in self.notified:
                self.notified.add(key)
                self.notice = SkipNotice(key=key, start=start, end=end, shown_at=now)
                if self.on_notice is not None:
                    self.on_notice(self.notice)
                return "notified"

            if start <= position < end and key not in self.skipped:
                target = min(end + SKIP_OVERSHOOT, self.player.duration)
                logger.info(
                    "ad at %s~%s (position %.1fs), skipping to %s",
                    format_seconds(start), format_seconds(end), position, format_seconds(target),
                )
                self.player.seek(target)
                self.skipped.add(key)
                return "skipped"
        return None

    def click_notice(self) -> str | None:
        """Handle a click on the current notice.

        Before the ad: keep the ad (no skip). After a skip, near or past the
        end: jump back to just before the ad. Otherwise: keep the ad.
        """
        notice = self.notice
        if notice is None:
            return None
        self.notice = None

        position = self.player.position
        already_skipped = notice.key in self.skipped
        if not already_skipped and position < notice.start:
            self.skipped.add(notice.key)
            logger.info("user kept ad %s", notice.key)
            return "cancelled"
        if already_skipped and position > notice.end - JUMP_BACK_WINDOW:
            self.player.seek(max(notice.start - JUMP_BACK_MARGIN, 0.0))
            logger.info("user jumped back to ad start %s", format_seconds(notice.start))
            return "jumped-back"
        self.skipped.add(notice.key)
        logger.info("user kept current ad %s", notice.key)
        return "cancelled"


def manual_skip(player: PlaybackClock, ranges: list[list[float]]) -> float | None:
    """Skip-button handler: jump to the end of the ad at or just ahead of the position."""
    position = player.position
    for start, end in ranges:
        if max(start - MANUAL_SKIP_LEAD, 0.0) <= position < end:
            player.seek(end)
            logger.info("manual skip to %s", format_seconds(end))
            return end
    return None
