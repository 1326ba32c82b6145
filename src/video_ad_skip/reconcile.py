"""
Caption-index intervals -> wall-clock ad ranges.

The model answers in caption indices; the player needs seconds. This module
maps one onto the other through the caption timing table and decides whether
the result is trustworthy enough to skip automatically.
"""

from dataclasses import dataclass, field

from .sanitizer import merge_index_intervals

MAX_CONFIDENT_INTERVALS = 3
MAX_CONFIDENT_AD_RATIO = 0.5


@dataclass(frozen=True)
class CaptionLine:
    """One caption or transcription entry; start/end are seconds."""

    start: float
    end: float
    content: str


@dataclass
class Reconciliation:
    ranges: list[list[float]] = field(default_factory=list)
    raw_interval_count: int = 0
    is_confident: bool = False

    @property
    def total_duration(self) -> float:
        return sum(end - start for start, end in self.ranges)


def dedupe_index_intervals(intervals: list[list[int]]) -> list[list[int]]:
    """Drop inverted and exact-duplicate intervals, keeping first-seen order."""
    seen: set[tuple[int, int]] = set()
    out: list[list[int]] = []
    for start, end in intervals:
        if end < start or (start, end) in seen:
            continue
        seen.add((start, end))
        out.append([start, end])
    return out


def index_to_second_ranges(
    intervals: list[list[int]], timing_table: list[CaptionLine]
) -> list[list[float]]:
    """Map [a, b] to (table[a].start, table[b].end), 0 for out-of-range indices.

    The timing table can be shorter than the caption count the model saw when
    transcription segments were deduplicated.
    """
    n = len(timing_table)

    def _line(i: int) -> CaptionLine | None:
        return timing_table[i] if 0 <= i < n else None

    ranges: list[list[float]] = []
    for a, b in intervals:
        first, last = _line(a), _line(b)
        ranges.append([
            float(first.start) if first else 0.0,
            float(last.end) if last else 0.0,
        ])
    return ranges


def is_detection_confident(
    ranges: list[list[float]], raw_interval_count: int, video_duration: float
) -> bool:
    """Few intervals covering less than half the video: safe to auto-skip."""
    total = sum(end - start for start, end in ranges)
    return (
        len(ranges) > 0
        and raw_interval_count <= MAX_CONFIDENT_INTERVALS
        and total < video_duration * MAX_CONFIDENT_AD_RATIO
    )


def reconcile(
    index_lists: list[list[int]],
    timing_table: list[CaptionLine],
    video_duration: float,
) -> Reconciliation:
    valid = dedupe_index_intervals(index_lists)
    ranges = index_to_second_ranges(merge_index_intervals(valid), timing_table)
    return Reconciliation(
        ranges=ranges,
        raw_interval_count=len(valid),
        is_confident=is_detection_confident(ranges, len(valid), video_duration),
    )


def format_seconds(seconds: float) -> str:
    """Format seconds as MM:SS, or H:MM:SS past the hour."""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def describe_ranges(ranges: list[list[float]]) -> str:
    return " | ".join(f"{format_seconds(s)}~{format_seconds(e)}" for s, e in ranges)
