"""
Turns raw LLM replies into a clean ad detection.

The model is asked for {"exist", "good_name", "index_lists"} but often wraps
it in prose, markdown fences or typographic quotes. parse_ad_result() digs the
object out, coerces the fields and cleans the caption-index intervals.
"""

import json
import math
import re
from dataclasses import dataclass, field

from .errors import InvalidDetectionError

_FENCE_RE = re.compile(r"```[\s\S]*?```")
_OUTER_OBJECT_RE = re.compile(r"^[\s\S]*?(\{[\s\S]*\})[\s\S]*$")
_ANY_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_DOUBLE_QUOTES_RE = re.compile("[“”„‟″]")
_SINGLE_QUOTES_RE = re.compile("[‘’′]")

# Missing caption indices tolerated between two intervals that still merge
MERGE_GAP = 1


@dataclass
class RawDetection:
    exist: bool = False
    good_name: list[str] = field(default_factory=list)
    index_lists: list[list[int]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "exist": self.exist,
            "good_name": list(self.good_name),
            "index_lists": [list(pair) for pair in self.index_lists],
        }


def _normalize_quotes(text: str) -> str:
    text = _DOUBLE_QUOTES_RE.sub('"', text)
    return _SINGLE_QUOTES_RE.sub("'", text)


def _is_number(value: object) -> bool:
    # bool is an int subclass; JSON true/false are not indices
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _load_object(raw: str) -> object:
    """Return the decoded JSON value hidden in raw, or None."""
    s = raw.strip()
    s = _FENCE_RE.sub(lambda m: m.group(0).replace("```", ""), s)
    s = _OUTER_OBJECT_RE.sub(r"\1", s, count=1)
    s = _normalize_quotes(s)
    try:
        return json.loads(s)
    except ValueError:
        pass

    # Second chance: only the braces of the untouched reply
    match = _ANY_OBJECT_RE.search(raw)
    if not match:
        return None
    try:
        return json.loads(_normalize_quotes(match.group(0)))
    except ValueError:
        return None


def merge_index_intervals(intervals: list[list[int]]) -> list[list[int]]:
    """Sort and merge index intervals that overlap, touch or sit one index apart.

    [[0, 2], [4, 5]] -> [[0, 5]] but [[0, 2], [5, 6]] stays as is.
    """
    merged: list[list[int]] = []
    for start, end in sorted(intervals, key=lambda pair: (pair[0], pair[1])):
        if not merged or start > merged[-1][1] + 1 + MERGE_GAP:
            merged.append([start, end])
        else:
            merged[-1][1] = max(merged[-1][1], end)
    return merged


def _clean_intervals(candidates: list, caption_count: int) -> list[list[int]]:
    n = max(0, int(caption_count or 0))
    cleaned: list[list[int]] = []
    for seg in candidates:
        if not isinstance(seg, (list, tuple)) or len(seg) != 2:
            continue
        a, b = seg
        if not (_is_number(a) and _is_number(b)):
            continue
        a = max(0, math.floor(a))
        b = max(0, math.floor(b))
        if n > 0:
            a = min(a, n - 1)
            b = min(b, n - 1)
        if a > b:
            a, b = b, a
        cleaned.append([a, b])
    return cleaned


def parse_ad_result(raw: str, caption_count: int = 0) -> RawDetection:
    """Extract the ad detection from an LLM reply.

    Never raises: anything unusable yields an empty detection. Intervals are
    floored, clamped to the caption range, sorted and merged, and exist is
    forced to False when no interval survives.
    """
    if not raw or not isinstance(raw, str):
        return RawDetection()

    obj = _load_object(raw)
    if not isinstance(obj, dict):
        return RawDetection()

    exist = obj.get("exist")
    names = obj.get("good_name")
    index_lists = obj.get("index_lists")

    detection = RawDetection(
        exist=exist if isinstance(exist, bool) else False,
        good_name=[x for x in names if isinstance(x, str)] if isinstance(names, list) else [],
        index_lists=merge_index_intervals(
            _clean_intervals(index_lists if isinstance(index_lists, list) else [], caption_count)
        ),
    )
    if not detection.index_lists:
        detection.exist = False
    return detection


def validate_detection(detection: RawDetection) -> RawDetection:
    """Check the shape of a detection before its intervals are used.

    Raises InvalidDetectionError instead of guessing, so contract violations
    surface as a failed run.
    """
    if not isinstance(detection.exist, bool) or not isinstance(detection.index_lists, list):
        raise InvalidDetectionError(
            f"unexpected detection format: exist={detection.exist!r} index_lists={detection.index_lists!r}"
        )
    if detection.exist:
        for item in detection.index_lists:
            if (
                not isinstance(item, (list, tuple))
                or len(item) != 2
                or not (_is_number(item[0]) and _is_number(item[1]))
            ):
                raise InvalidDetectionError(f"malformed ad index interval: {item!r}")
    return detection
