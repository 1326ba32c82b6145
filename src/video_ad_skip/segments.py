"""
User-editable ad segments.

Each detected range becomes an AdSegment the user can switch off (keep the
ad), drag or resize on the progress bar. The scheduler only ever sees
effective_ranges(), so edits apply on its next tick.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from .reconcile import format_seconds

logger = logging.getLogger(__name__)

MIN_SEGMENT_LENGTH = 0.5
DRAG_THRESHOLD_PX = 2.0

MODE_MOVE = "move"
MODE_RESIZE_LEFT = "resize-left"
MODE_RESIZE_RIGHT = "resize-right"
_MODES = (MODE_MOVE, MODE_RESIZE_LEFT, MODE_RESIZE_RIGHT)


@dataclass
class AdSegment:
    id: str
    start: float
    end: float
    # False: a known ad the user chose to watch
    active: bool = True

    @property
    def length(self) -> float:
        return self.end - self.start


class SegmentModel:
    """Ordered ad segments of one video, with clamped edit operations."""

    def __init__(self, ranges: list[list[float]], duration: float) -> None:
        pairs = [sorted((float(s), float(e))) for s, e in ranges]
        self.duration = max(0.0, float(duration or 0.0))
        if self.duration <= 0:
            # Unknown duration: the furthest range end is the only known bound
            self.duration = max([0.0] + [e for _, e in pairs])
        stamp = int(time.time() * 1000)
        self.segments: list[AdSegment] = []
        for i, (s, e) in enumerate(pairs):
            start = min(max(s, 0.0), self.duration)
            end = min(max(e, 0.0), self.duration)
            self.segments.append(AdSegment(id=f"ad-seg-{stamp}-{i}", start=start, end=end))

    def __len__(self) -> int:
        return len(self.segments)

    def get(self, segment_id: str) -> AdSegment:
        for seg in self.segments:
            if seg.id == segment_id:
                return seg
        raise KeyError(segment_id)

    def effective_ranges(self) -> list[list[float]]:
        """Active segments as [start, end], in segment order (not re-sorted)."""
        return [[seg.start, seg.end] for seg in self.segments if seg.active]

    def all_ranges(self) -> list[list[float]]:
        return [[seg.start, seg.end] for seg in self.segments]

    def toggle_active(self, segment_id: str) -> AdSegment:
        seg = self.get(segment_id)
        seg.active = not seg.active
        logger.info("segment %s %s", seg.id, "enabled" if seg.active else "disabled")
        return seg

    def _fit(self, start: float, end: float, length: float) -> tuple[float, float]:
        """Slide [start, end] back inside [0, duration], keeping length where it fits."""
        length = min(max(length, 0.0), self.duration)
        if start < 0:
            start, end = 0.0, length
        if end > self.duration:
            end = self.duration
            start = max(0.0, self.duration - length)
        return start, end

    def move(self, segment_id: str, delta_seconds: float) -> AdSegment:
        """Shift the segment, keeping its length and staying inside the video."""
        seg = self.get(segment_id)
        seg.start, seg.end = self._fit(seg.start + delta_seconds, seg.end + delta_seconds, seg.length)
        return seg

    def resize_start(self, segment_id: str, new_start: float) -> AdSegment:
        seg = self.get(segment_id)
        end = min(max(seg.end, 0.0), self.duration)
        start = min(max(new_start, 0.0), end - MIN_SEGMENT_LENGTH)
        seg.start, seg.end = max(start, 0.0), end
        return seg

    def resize_end(self, segment_id: str, new_end: float) -> AdSegment:
        seg = self.get(segment_id)
        start = min(max(seg.start, 0.0), self.duration)
        end = max(min(new_end, self.duration), start + MIN_SEGMENT_LENGTH)
        seg.start, seg.end = self._fit(start, end, end - start)
        return seg


@dataclass(frozen=True)
class GestureOutcome:
    segment_id: str
    action: str  # "toggled", "moved" or "resized"
    segment: AdSegment


class SegmentGesture:
    """Pointer down/move/up on a segment marker -> toggle, move or resize.

    Nothing is changed until the pointer has travelled more than
    DRAG_THRESHOLD_PX; a release before that is a click and toggles the
    segment. Once a drag, always a drag for the rest of the gesture.
    """

    def __init__(
        self,
        model: SegmentModel,
        layer_width: float,
        *,
        on_change: Callable[[SegmentModel], None] | None = None,
    ) -> None:
        self.model = model
        self.layer_width = float(layer_width)
        self.on_change = on_change
        self._segment_id: str | None = None
        self._mode: str | None = None
        self._origin_x = 0.0
        self._initial_start = 0.0
        self._initial_end = 0.0
        self.is_dragging = False

    @property
    def active(self) -> bool:
        return self._mode is not None

    def pointer_down(self, segment_id: str, x: float, mode: str = MODE_MOVE) -> None:
        if mode not in _MODES:
            raise ValueError(f"unknown gesture mode: {mode!r}")
        seg = self.model.get(segment_id)
        self._segment_id = segment_id
        self._mode = mode
        self._origin_x = float(x)
        self._initial_start = seg.start
        self._initial_end = seg.end
        self.is_dragging = False

    def pointer_move(self, x: float) -> None:
        if self._mode is None or self._segment_id is None:
            return
        dx = float(x) - self._origin_x
        if abs(dx) > DRAG_THRESHOLD_PX:
            self.is_dragging = True
        if not self.is_dragging or self.layer_width <= 0:
            return

        delta = dx / self.layer_width * self.model.duration
        seg = self.model.get(self._segment_id)
        if self._mode == MODE_MOVE:
            self.model.move(self._segment_id, self._initial_start + delta - seg.start)
        elif self._mode == MODE_RESIZE_LEFT:
            self.model.resize_start(self._segment_id, self._initial_start + delta)
        else:
            self.model.resize_end(self._segment_id, self._initial_end + delta)

    def pointer_up(self) -> GestureOutcome | None:
        if self._mode is None or self._segment_id is None:
            return None
        segment_id, mode = self._segment_id, self._mode
        self._segment_id = None
        self._mode = None

        if not self.is_dragging:
            seg = self.model.toggle_active(segment_id)
            action = "toggled"
        else:
            seg = self.model.get(segment_id)
            action = "moved" if mode == MODE_MOVE else "resized"
            logger.info(
                "segment %s adjusted: %s - %s",
                segment_id, format_seconds(seg.start), format_seconds(seg.end),
            )
        self.is_dragging = False

        if self.on_change is not None:
            self.on_change(self.model)
        return GestureOutcome(segment_id=segment_id, action=action, segment=seg)
