"""Tests for the end-to-end detection run, with fake collaborators."""

import json

import pytest

from video_ad_skip.cache import CACHE_KEY, DetectionCache, MemoryStore
from video_ad_skip.config import Settings, SettingsWhitelist
from video_ad_skip.detector import AdDetector, SessionContext, describe_links
from video_ad_skip.errors import MetadataError
from video_ad_skip.player import SimulatedPlayer
from video_ad_skip.reconcile import CaptionLine
from video_ad_skip.segments import SegmentModel
from video_ad_skip.youtube import TopComment, VideoInfo

VIDEO_ID = "dQw4w9WgXcQ"


def _lines(n: int, length: float = 5.0) -> list[CaptionLine]:
    return [CaptionLine(start=i * length, end=(i + 1) * length, content=f"line {i}") for i in range(n)]


class FakeMetadata:
    def __init__(self, captions=None, top_comment=None, owner_id="UC123", duration=200.0):
        self.captions = captions if captions is not None else _lines(40)
        self.top_comment = top_comment
        self.info = VideoInfo(title="My video", owner_id=owner_id, duration=duration)
        self.calls: list[str] = []

    def get_video_info(self, video_id):
        self.calls.append("info")
        return self.info

    def get_top_comment(self, video_id):
        self.calls.append("comment")
        return self.top_comment

    def get_captions(self, video_id):
        self.calls.append("captions")
        return self.captions


class FakeAI:
    def __init__(self, reply="", product="Widget", error=None):
        self.reply = reply
        self.product = product
        self.error = error
        self.payloads: list[dict] = []

    def detect(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.reply

    def extract_product_name(self, ad_text):
        return self.product


class FakeTranscriber:
    def __init__(self, segments=None, error=None):
        self.segments = segments or []
        self.error = error

    def transcribe(self, video_id):
        if self.error is not None:
            raise self.error
        return self.segments


def _reply(exist: bool, index_lists: list, good_name=None) -> str:
    return json.dumps({"exist": exist, "good_name": good_name or [], "index_lists": index_lists})


@pytest.fixture
def cache() -> DetectionCache:
    return DetectionCache(MemoryStore())


@pytest.fixture
def player() -> SimulatedPlayer:
    return SimulatedPlayer(duration=200.0)


def _detector(cache, ai, metadata=None, transcriber=None, **settings) -> AdDetector:
    s = Settings(**settings)
    return AdDetector(
        s, cache, metadata or FakeMetadata(), ai,
        whitelist=SettingsWhitelist(s), transcriber=transcriber,
    )


def test_detects_and_caches(cache: DetectionCache, player: SimulatedPlayer) -> None:
    ai = FakeAI(_reply(True, [[2, 3]], ["VPN"]))
    session = _detector(cache, ai).analyze(VIDEO_ID, player)

    assert session.error is None
    assert session.status == "found 1 ad(s): 00:10~00:20"
    assert session.effective_ranges() == [[10.0, 20.0]]
    assert session.is_confident is True
    assert session.scheduler is None

    entry = cache.get(VIDEO_ID)
    assert entry is not None
    assert entry.exist is True
    assert entry.good_name == ["VPN"]
    assert entry.ad_time_ranges == [[10.0, 20.0]]
    assert entry.is_detection_confident is True

    payload = ai.payloads[0]
    assert payload["title"] == "My video"
    assert payload["captions"][0] == "line 0"
    assert len(payload["captions"]) == 40


def test_cache_hit_skips_collaborators(cache: DetectionCache, player: SimulatedPlayer) -> None:
    cache.save(VIDEO_ID, True, [], [[30.0, 40.0]], True)
    metadata = FakeMetadata()
    ai = FakeAI()
    session = _detector(cache, ai, metadata).analyze(VIDEO_ID, player)
    assert session.from_cache is True
    assert session.status == "found 1 ad(s) (cached): 00:30~00:40"
    assert session.effective_ranges() == [[30.0, 40.0]]
    assert metadata.calls == []
    assert ai.payloads == []


def test_cached_no_ad(cache: DetectionCache, player: SimulatedPlayer) -> None:
    cache.save(VIDEO_ID, False, [], [], False)
    session = _detector(cache, FakeAI()).analyze(VIDEO_ID, player)
    assert session.status == "no ads (cached)"
    assert session.effective_ranges() == []


def test_disabled(cache: DetectionCache, player: SimulatedPlayer) -> None:
    metadata = FakeMetadata()
    session = _detector(cache, FakeAI(), metadata, enabled=False).analyze(VIDEO_ID, player)
    assert session.status == "extension disabled"
    assert metadata.calls == []
    assert cache.get(VIDEO_ID) is None


def test_disable_mid_session(cache: DetectionCache, player: SimulatedPlayer) -> None:
    detector = _detector(cache, FakeAI(_reply(True, [[2, 3]])), auto_skip=True)
    detector.analyze(VIDEO_ID, player)
    assert player.listener_count == 1
    detector.disable()
    assert player.listener_count == 0
    assert detector.session.segments is None


def test_whitelisted_owner(cache: DetectionCache, player: SimulatedPlayer) -> None:
    ai = FakeAI()
    session = _detector(cache, ai, whitelist={"UC123"}).analyze(VIDEO_ID, player)
    assert session.status == "uploader whitelisted, detection skipped"
    assert ai.payloads == []
    assert cache.get(VIDEO_ID) is None


def test_no_captions(cache: DetectionCache, player: SimulatedPlayer) -> None:
    ai = FakeAI()
    session = _detector(cache, ai, FakeMetadata(captions=[])).analyze(VIDEO_ID, player)
    assert session.status == "no captions, cannot detect"
    assert ai.payloads == []
    assert cache.get(VIDEO_ID) is None


def test_audio_fallback_dedupes_segments(cache: DetectionCache, player: SimulatedPlayer) -> None:
    transcriber = FakeTranscriber([
        {"start": 0, "end": 4, "text": "hello"},
        {"start": 4, "end": 8, "text": "hello"},
        {"start": 8, "end": 12, "text": " "},
        {"start": 12, "end": 20, "text": "use code SAVE10"},
    ])
    ai = FakeAI(_reply(True, [[1, 1]]))
    session = _detector(
        cache, ai, FakeMetadata(captions=[]), transcriber, audio_transcription=True,
    ).analyze(VIDEO_ID, player)
    assert ai.payloads[0]["captions"] == {0: "hello", 1: "use code SAVE10"}
    assert session.effective_ranges() == [[12.0, 20.0]]


def test_audio_failure_is_reported(cache: DetectionCache, player: SimulatedPlayer) -> None:
    transcriber = FakeTranscriber(error=RuntimeError("429 Too Many Requests"))
    session = _detector(
        cache, FakeAI(), FakeMetadata(captions=[]), transcriber, audio_transcription=True,
    ).analyze(VIDEO_ID, player)
    assert session.status == "audio analysis failed: 429 Too Many Requests | no captions, cannot detect"


def test_ai_failure_leaves_cache_untouched(cache: DetectionCache, player: SimulatedPlayer) -> None:
    ai = FakeAI(error=RuntimeError("overloaded"))
    session = _detector(cache, ai).analyze(VIDEO_ID, player)
    assert session.error == "overloaded"
    assert session.status == "AI analysis failed: overloaded"
    assert cache.get(VIDEO_ID) is None
    assert session.scheduler is None


def test_metadata_failure(cache: DetectionCache, player: SimulatedPlayer) -> None:
    class BrokenMetadata(FakeMetadata):
        def get_video_info(self, video_id):
            raise MetadataError("yt-dlp metadata fetch failed")

    session = _detector(cache, FakeAI(), BrokenMetadata()).analyze(VIDEO_ID, player)
    assert session.status == "AI analysis failed: yt-dlp metadata fetch failed"
    assert cache.get(VIDEO_ID) is None


def test_no_ad_writes_entry(cache: DetectionCache, player: SimulatedPlayer) -> None:
    session = _detector(cache, FakeAI(_reply(False, []))).analyze(VIDEO_ID, player)
    assert session.status == "no ads"
    entry = cache.get(VIDEO_ID)
    assert entry is not None
    assert entry.exist is False
    assert entry.ad_time_ranges == []


def test_garbage_reply_counts_as_no_ads(cache: DetectionCache, player: SimulatedPlayer) -> None:
    session = _detector(cache, FakeAI("I could not find anything.")).analyze(VIDEO_ID, player)
    assert session.status == "no ads"
    assert session.error is None


def test_confident_result_starts_auto_skip(cache: DetectionCache, player: SimulatedPlayer) -> None:
    session = _detector(cache, FakeAI(_reply(True, [[6, 7]])), auto_skip=True).analyze(VIDEO_ID, player)
    assert session.scheduler is not None
    assert session.scheduler.running
    player.advance_to(32.0)
    assert player.position == pytest.approx(40.1)


def test_low_confidence_does_not_auto_skip(cache: DetectionCache, player: SimulatedPlayer) -> None:
    ai = FakeAI(_reply(True, [[0, 1], [5, 6], [10, 11], [20, 21]]))
    session = _detector(cache, ai, auto_skip=True).analyze(VIDEO_ID, player)
    assert session.is_confident is False
    assert session.scheduler is None
    assert len(session.effective_ranges()) == 4
    assert cache.get(VIDEO_ID).is_detection_confident is False


def test_reanalyze_replaces_scheduler(cache: DetectionCache, player: SimulatedPlayer) -> None:
    detector = _detector(cache, FakeAI(_reply(True, [[6, 7]])), auto_skip=True)
    detector.analyze(VIDEO_ID, player)
    detector.analyze(VIDEO_ID, player)
    assert player.listener_count == 1
    assert detector.session.from_cache is True


class TestRestrictedMode:
    def test_without_shop_link_saves_no_ad(self, cache: DetectionCache, player: SimulatedPlayer) -> None:
        ai = FakeAI()
        comment = TopComment(message="thanks for watching", jump_links={})
        session = _detector(
            cache, ai, FakeMetadata(top_comment=comment), restricted_mode=True,
        ).analyze(VIDEO_ID, player)
        assert session.status == "no ad condition detected"
        assert ai.payloads == []
        assert cache.get(VIDEO_ID).exist is False

    def test_shop_link_passes_product_names(self, cache: DetectionCache, player: SimulatedPlayer) -> None:
        comment = TopComment(
            message="get it here https://amzn.to/abc",
            jump_links={"https://amzn.to/abc": {"is_goods": True, "title": "Desk lamp", "platform": "amzn.to"}},
        )
        ai = FakeAI(_reply(True, [[2, 3]]), product="Desk lamp")
        _detector(cache, ai, FakeMetadata(top_comment=comment), restricted_mode=True).analyze(VIDEO_ID, player)
        assert ai.payloads[0]["good_names"] == ["Desk lamp"]


def test_sync_edits_updates_cache(cache: DetectionCache, player: SimulatedPlayer) -> None:
    detector = _detector(cache, FakeAI(_reply(True, [[2, 3]])))
    session = detector.analyze(VIDEO_ID, player)
    session.segments.move(session.segments.segments[0].id, 5.0)
    detector.sync_edits(session.segments)
    assert cache.get(VIDEO_ID).ad_time_ranges == [[15.0, 25.0]]


def test_switched_off_segments_stay_cached(cache: DetectionCache, player: SimulatedPlayer) -> None:
    detector = _detector(cache, FakeAI(_reply(True, [[2, 3], [20, 21]])))
    session = detector.analyze(VIDEO_ID, player)
    gesture = detector.segment_gesture(layer_width=1000)
    for seg in session.segments.segments:
        gesture.pointer_down(seg.id, 10)
        gesture.pointer_up()
    assert session.effective_ranges() == []
    entry = cache.get(VIDEO_ID)
    assert entry.exist is True
    assert entry.ad_time_ranges == [[10.0, 20.0], [100.0, 110.0]]


def test_segment_gesture_drag_is_cached(cache: DetectionCache, player: SimulatedPlayer) -> None:
    detector = _detector(cache, FakeAI(_reply(True, [[2, 3]])))
    session = detector.analyze(VIDEO_ID, player)
    gesture = detector.segment_gesture(layer_width=1000)
    # 50px of a 1000px bar over a 200s video
    gesture.pointer_down(session.segments.segments[0].id, 500)
    gesture.pointer_move(550)
    gesture.pointer_up()
    (start, end), = cache.get(VIDEO_ID).ad_time_ranges
    assert start == pytest.approx(20.0)
    assert end == pytest.approx(30.0)


def test_segment_gesture_needs_segments(cache: DetectionCache) -> None:
    with pytest.raises(ValueError):
        _detector(cache, FakeAI()).segment_gesture(layer_width=1000)


def test_corrupt_cache_entry_does_not_fail_run(player: SimulatedPlayer) -> None:
    store = MemoryStore()
    store.set({CACHE_KEY: {VIDEO_ID: {"exist": True, "adTimeRanges": [[1, 2]], "createdAt": "yesterday"}}})
    cache = DetectionCache(store)
    ai = FakeAI(_reply(False, []))
    session = _detector(cache, ai).analyze(VIDEO_ID, player)
    assert session.status == "no ads"
    assert len(ai.payloads) == 1
    assert cache.get(VIDEO_ID).exist is False


def test_sync_edits_without_video_is_noop(cache: DetectionCache) -> None:
    detector = _detector(cache, FakeAI())
    detector.sync_edits(SegmentModel([[1, 2]], 10))
    assert cache.stats().total == 0


class TestSessionContext:
    def test_status_is_pipe_joined(self) -> None:
        session = SessionContext()
        session.add_status("a")
        session.add_status("b")
        assert session.status == "a | b"
        session.reset()
        assert session.status is None


def test_describe_links() -> None:
    assert describe_links(None) == {}
    assert describe_links(TopComment("hi")) == {"pinned comment": {"has_link": False}}
    comment = TopComment("x", {"https://shop.example/p": {"is_goods": True, "title": "Mug", "platform": "shop.example"}})
    assert describe_links(comment) == {
        "https://shop.example/p": {"is_official_goods_link": True, "platform": "shop.example", "link_title": "Mug"},
    }
