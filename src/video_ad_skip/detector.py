"""
Detection run: cache -> metadata -> captions -> model -> segments -> auto-skip.

One AdDetector serves one viewing session. Each analyze() call resets the
session (segments, scheduler) and appends a short outcome to the session
status; failures end the run early and never write the cache.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from .ai import AIProvider
from .cache import DetectionCache
from .config import Settings
from .player import PlaybackClock
from .reconcile import CaptionLine, describe_ranges, reconcile
from .sanitizer import RawDetection, parse_ad_result, validate_detection
from .scheduler import AutoSkipScheduler
from .segments import SegmentGesture, SegmentModel
from .transcribe import Transcriber, timing_table_from_segments
from .youtube import MetadataProvider, TopComment

logger = logging.getLogger(__name__)

STATUS_SEPARATOR = " | "


class WhitelistProvider:
    def is_whitelisted(self, owner_id: str) -> bool:
        return False


@dataclass
class SessionContext:
    """Everything one viewing session knows about the current video."""

    video_id: str | None = None
    status: str | None = None
    segments: SegmentModel | None = None
    scheduler: AutoSkipScheduler | None = None
    detection: RawDetection | None = None
    is_confident: bool = False
    from_cache: bool = False
    error: str | None = None
    timing_table: list[CaptionLine] = field(default_factory=list)

    def add_status(self, message: str) -> None:
        self.status = f"{self.status}{STATUS_SEPARATOR}{message}" if self.status else message

    def effective_ranges(self) -> list[list[float]]:
        return self.segments.effective_ranges() if self.segments is not None else []

    def stop_auto_skip(self) -> None:
        if self.scheduler is not None:
            self.scheduler.teardown()
            self.scheduler = None

    def reset(self) -> None:
        self.stop_auto_skip()
        self.video_id = None
        self.status = None
        self.segments = None
        self.detection = None
        self.is_confident = False
        self.from_cache = False
        self.error = None
        self.timing_table = []


def describe_links(top_comment: TopComment | None) -> dict[str, dict[str, Any]]:
    """Summarise pinned-comment links for the prompt."""
    if top_comment is None:
        return {}
    if not top_comment.jump_links:
        return {"pinned comment": {"has_link": False}}
    messages: dict[str, dict[str, Any]] = {}
    for url, info in top_comment.jump_links.items():
        message: dict[str, Any] = {"is_official_goods_link": bool(info.get("is_goods"))}
        if info.get("platform"):
            message["platform"] = info["platform"]
        if info.get("title"):
            message["link_title"] = info["title"]
        messages[url] = message
    return messages


class AdDetector:
    def __init__(
        self,
        settings: Settings,
        cache: DetectionCache,
        metadata: MetadataProvider,
        ai: AIProvider,
        whitelist: WhitelistProvider | None = None,
        transcriber: Transcriber | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.metadata = metadata
        self.ai = ai
        self.whitelist = whitelist or WhitelistProvider()
        self.transcriber = transcriber
        self.session = SessionContext()

    def _start_auto_skip(self, player: PlaybackClock) -> None:
        scheduler = AutoSkipScheduler(player, self.session.effective_ranges)
        scheduler.setup()
        self.session.scheduler = scheduler

    def _apply_ranges(
        self, ranges: list[list[float]], player: PlaybackClock, confident: bool, duration: float | None = None
    ) -> None:
        self.session.segments = SegmentModel(ranges, duration if duration is not None else player.duration)
        self.session.is_confident = confident
        if self.settings.auto_skip and confident and len(self.session.segments) > 0:
            logger.info("starting auto-skip")
            self._start_auto_skip(player)

    def disable(self) -> None:
        """Turn detection off mid-session and drop the current segments."""
        self.settings.enabled = False
        self.session.reset()

    def sync_edits(self, model: SegmentModel) -> None:
        """Persist manually adjusted segments for the current video.

        Switched-off segments are still ads, so every segment is written.
        """
        if self.session.video_id is not None:
            self.cache.update_ad_time_ranges(self.session.video_id, model.all_ranges())

    def segment_gesture(self, layer_width: float) -> SegmentGesture:
        """Gesture handler for the segment markers; finished edits go to the cache."""
        if self.session.segments is None:
            raise ValueError("no ad segments for the current video")
        return SegmentGesture(self.session.segments, layer_width, on_change=self.sync_edits)

    def _timing_table(self, video_id: str) -> list[CaptionLine]:
        table = self.metadata.get_captions(video_id)
        if table:
            logger.info("using %d official caption lines", len(table))
            return table
        if not (self.settings.audio_transcription and self.transcriber is not None):
            logger.info("no captions and audio transcription disabled")
            return []
        try:
            segments = self.transcriber.transcribe(video_id)
        except Exception as e:
            logger.warning("audio transcription failed: %s", e)
            self.session.add_status(f"audio analysis failed: {e}")
            return []
        return timing_table_from_segments(segments)

    def _restricted_goods(self, top_comment: TopComment | None, links: dict[str, dict[str, Any]]) -> list[str]:
        names: list[str] = []
        for url, message in links.items():
            if not message.get("is_official_goods_link"):
                continue
            ad_text = f"pinned comment: {top_comment.message if top_comment else ''} link title: {message.get('link_title', url)}"
            try:
                names.append(self.ai.extract_product_name(ad_text))
            except Exception as e:
                logger.warning("product name extraction failed: %s", e)
                names.append(ad_text)
        return names

    def analyze(self, video_id: str, player: PlaybackClock) -> SessionContext:
        session = self.session
        if not self.settings.enabled:
            logger.info("detection disabled, skipping")
            session.add_status("extension disabled")
            return session

        session.reset()
        session.video_id = video_id

        self.cache.clean_expired()
        cached = self.cache.get(video_id)
        if cached is not None:
            logger.info("using cached result for %s", video_id)
            session.from_cache = True
            self._apply_ranges(cached.ad_time_ranges, player, cached.is_detection_confident)
            if cached.exist and len(session.segments) > 0:
                session.add_status(
                    f"found {len(session.segments)} ad(s) (cached): {describe_ranges(session.segments.all_ranges())}"
                )
            else:
                session.add_status("no ads (cached)")
            return session

        try:
            info = self.metadata.get_video_info(video_id)
            if self.whitelist.is_whitelisted(info.owner_id):
                logger.info("owner %s is whitelisted, skipping", info.owner_id)
                session.add_status("uploader whitelisted, detection skipped")
                return session

            top_comment = self.metadata.get_top_comment(video_id)
            links = describe_links(top_comment)

            good_names: list[str] = []
            if self.settings.restricted_mode:
                good_names = self._restricted_goods(top_comment, links)
                if not good_names:
                    logger.info("restricted mode: no shop link, skipping model")
                    session.add_status("no ad condition detected")
                    session.stop_auto_skip()
                    self.cache.save(video_id, False, [], [], False)
                    return session

            table = self._timing_table(video_id)
            if not table:
                session.add_status("no captions, cannot detect")
                return session
            session.timing_table = table

            payload: dict[str, Any] = {
                "title": info.title,
                "top_comment": top_comment.message if top_comment else None,
                "link_messages": links,
                "captions": {i: line.content for i, line in enumerate(table)},
            }
            if good_names:
                payload["good_names"] = good_names
            raw = self.ai.detect(payload)

            detection = validate_detection(parse_ad_result(raw, len(table)))
            session.detection = detection
            logger.info("model verdict: %s", detection.to_dict())

            duration = player.duration or info.duration
            if detection.exist:
                result = reconcile(detection.index_lists, table, duration)
                self._apply_ranges(result.ranges, player, result.is_confident, duration)
                session.add_status(f"found {len(result.ranges)} ad(s): {describe_ranges(result.ranges)}")
                self.cache.save(video_id, True, detection.good_name, result.ranges, result.is_confident)
            else:
                session.add_status("no ads")
                session.stop_auto_skip()
                self.cache.save(video_id, False, [], [], False)
        except Exception as e:
            logger.warning("detection failed: %s", e)
            session.error = str(e)
            session.add_status(f"AI analysis failed: {e}")
            session.stop_auto_skip()
        return session
