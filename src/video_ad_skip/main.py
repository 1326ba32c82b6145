"""
Video ad skipper: one entry point for detection and cache maintenance.

Usage:
    video-ad-skip detect <url>              # Detect ad segments (cached for a day)
    video-ad-skip parse [reply.txt]         # Sanitize a raw model reply
    video-ad-skip simulate <url>            # Play the video virtually with auto-skip
    video-ad-skip cache-stats               # Show cache statistics
    video-ad-skip cache-clean [--force]     # Sweep expired cache entries
    video-ad-skip cache-delete <video_id>   # Forget one video
    video-ad-skip cache-clear               # Forget everything
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path

import typer

from .cache import DetectionCache, JsonFileStore
from .config import Settings, SettingsWhitelist, load_env
from .detector import AdDetector, SessionContext
from .player import SimulatedPlayer
from .reconcile import format_seconds
from .sanitizer import parse_ad_result
from .scheduler import AutoSkipScheduler, SkipNotice
from .youtube import YouTubeMetadata, extract_video_id

app = typer.Typer(help="Detect and skip embedded ads in YouTube videos.")


def _settings(cache_path: Path | None) -> Settings:
    load_env()
    settings = Settings.from_env()
    if cache_path is not None:
        settings.cache_path = cache_path
    return settings


def _cache(settings: Settings) -> DetectionCache:
    return DetectionCache(JsonFileStore(settings.cache_path))


def _build_detector(settings: Settings, cookies: str | None) -> AdDetector:
    from .ai import AnthropicAdDetector
    from .transcribe import DeepgramTranscriber

    return AdDetector(
        settings=settings,
        cache=_cache(settings),
        metadata=YouTubeMetadata(cookies_path=cookies),
        ai=AnthropicAdDetector(model=settings.model),
        whitelist=SettingsWhitelist(settings),
        transcriber=DeepgramTranscriber(cookies_path=cookies),
    )


def _format_ms(timestamp_ms: int) -> str:
    if not timestamp_ms:
        return "never"
    return datetime.fromtimestamp(timestamp_ms / 1000).isoformat(timespec="seconds")


def _print_session(session: SessionContext) -> None:
    print(f"Status: {session.status or 'detection not finished'}")
    if session.segments is None or not len(session.segments):
        return
    print(f"{'─' * 40}")
    for seg in session.segments.segments:
        print(f"  {format_seconds(seg.start)} - {format_seconds(seg.end)}")
    print(f"{'─' * 40}")
    print(f"  Confident (auto-skip allowed): {'yes' if session.is_confident else 'no'}")
    if session.detection is not None and session.detection.good_name:
        print(f"  Products: {', '.join(session.detection.good_name)}")


def _run_detection(
    url: str, cookies: str | None, cache_path: Path | None, force: bool
) -> tuple[AdDetector, SessionContext, SimulatedPlayer]:
    settings = _settings(cache_path)
    video_id = extract_video_id(url)
    detector = _build_detector(settings, cookies)
    if force:
        detector.cache.delete(video_id)

    print(f"Video ID: {video_id}")
    try:
        duration = detector.metadata.get_video_info(video_id).duration
    except Exception as e:
        print(f"WARNING: Could not fetch video metadata: {e}")
        duration = 0.0
    player = SimulatedPlayer(duration=duration)
    session = detector.analyze(video_id, player)
    return detector, session, player


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def detect(
    url: str = typer.Argument(..., help="YouTube video URL or ID"),
    cookies: str | None = typer.Option(None, "--cookies", help="Path to cookies.txt"),
    force: bool = typer.Option(False, "--force", help="Ignore a cached result"),
    cache_path: Path | None = typer.Option(None, "--cache", help="Cache file (default: ~/.cache/video-ad-skip/cache.json)"),
) -> None:
    """Detect ad segments in a video."""
    _, session, _ = _run_detection(url, cookies, cache_path, force)
    _print_session(session)
    if session.error:
        raise typer.Exit(1)


@app.command()
def parse(
    path: Path | None = typer.Argument(None, help="File with the raw model reply (default: stdin)"),
    captions: int = typer.Option(0, "--captions", "-n", help="Number of caption lines, for index clamping"),
) -> None:
    """Sanitize a raw model reply and print the cleaned detection."""
    raw = path.read_text() if path else sys.stdin.read()
    print(json.dumps(parse_ad_result(raw, captions).to_dict(), indent=2, ensure_ascii=False))


@app.command()
def simulate(
    url: str = typer.Argument(..., help="YouTube video URL or ID"),
    cookies: str | None = typer.Option(None, "--cookies", help="Path to cookies.txt"),
    step: float = typer.Option(0.25, "--step", min=0.05, help="Seconds of playback between position updates"),
    start: float = typer.Option(0.0, "--start", help="Start position in seconds"),
    cancel: list[int] = typer.Option([], "--cancel", help="Cancel the skip of the Nth notified ad (1-based)"),
    ignore_confidence: bool = typer.Option(False, "--ignore-confidence", help="Auto-skip low-confidence results too"),
    cache_path: Path | None = typer.Option(None, "--cache", help="Cache file"),
) -> None:
    """Play the video virtually and show what auto-skip would do."""
    _, session, player = _run_detection(url, cookies, cache_path, force=False)
    _print_session(session)
    if session.error or session.segments is None or not len(session.segments):
        raise typer.Exit(1 if session.error else 0)
    if not session.is_confident and not ignore_confidence:
        print("Detection is not confident; auto-skip stays off (use --ignore-confidence).")
        return
    if player.duration <= 0:
        print("ERROR: unknown video duration")
        raise typer.Exit(1)

    session.stop_auto_skip()
    virtual_now = [0.0]
    notices: list[SkipNotice] = []

    def _on_notice(notice: SkipNotice) -> None:
        notices.append(notice)
        print(f"[{format_seconds(player.position)}] notice: ad at {format_seconds(notice.start)}~{format_seconds(notice.end)}")
        if len(notices) in cancel:
            print(f"[{format_seconds(player.position)}] user cancelled skip #{len(notices)}")
            scheduler.click_notice()

    scheduler = AutoSkipScheduler(
        player, session.effective_ranges, clock=lambda: virtual_now[0], on_notice=_on_notice
    )
    scheduler.setup()
    session.scheduler = scheduler

    position = start
    while position < player.duration:
        before = len(player.seeks)
        player.advance_to(position)
        if len(player.seeks) > before:
            print(f"[{format_seconds(position)}] skipped to {format_seconds(player.position)}")
        position = player.position + step
        virtual_now[0] += step
    scheduler.teardown()
    print("Playback finished.")


@app.command("cache-stats")
def cache_stats(
    cache_path: Path | None = typer.Option(None, "--cache", help="Cache file"),
) -> None:
    """Show detection cache statistics."""
    stats = _cache(_settings(cache_path)).stats()
    print(f"  {'Entries':<16} {stats.total:>8}")
    print(f"  {'Valid':<16} {stats.valid:>8}")
    print(f"  {'Expired':<16} {stats.expired:>8}")
    print(f"  {'Size (chars)':<16} {stats.size:>8}")
    print(f"  {'Last cleanup':<16} {_format_ms(stats.last_cleanup)}")
    print(f"  {'Next cleanup':<16} {_format_ms(stats.next_cleanup) if stats.last_cleanup else 'next run'}")


@app.command("cache-clean")
def cache_clean(
    force: bool = typer.Option(False, "--force", help="Sweep even if the last sweep was less than a day ago"),
    cache_path: Path | None = typer.Option(None, "--cache", help="Cache file"),
) -> None:
    """Remove expired cache entries."""
    cache = _cache(_settings(cache_path))
    removed = cache.force_clean_expired() if force else cache.clean_expired()
    print(f"Removed {removed} expired entr{'y' if removed == 1 else 'ies'}")


@app.command("cache-delete")
def cache_delete(
    video_id: str = typer.Argument(..., help="Video ID"),
    cache_path: Path | None = typer.Option(None, "--cache", help="Cache file"),
) -> None:
    """Forget the cached result of one video."""
    _cache(_settings(cache_path)).delete(video_id)
    print(f"Deleted cache entry for {video_id}")


@app.command("cache-clear")
def cache_clear(
    cache_path: Path | None = typer.Option(None, "--cache", help="Cache file"),
) -> None:
    """Forget all cached results."""
    _cache(_settings(cache_path)).clear_all()
    print("Cache cleared")


if __name__ == "__main__":
    app()
