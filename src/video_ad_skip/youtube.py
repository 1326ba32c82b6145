"""
YouTube metadata and captions.

Video info and the pinned comment come from yt-dlp --dump-json, captions from
youtube-transcript-api. Used as the metadata provider for detection runs.
"""

import json
import re
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlparse

from .errors import MetadataError
from .reconcile import CaptionLine

_URL_RE = re.compile(r"https?://[^\s<>\"']+")

# Hosts whose links in a pinned comment count as shop links in restricted mode
SHOP_HOSTS = (
    "amazon.", "amzn.to", "aliexpress.", "etsy.com", "ebay.", "shopify.",
    "temu.com", "bit.ly", "geni.us", "shop.", "store.",
)


@dataclass(frozen=True)
class VideoInfo:
    title: str
    owner_id: str
    duration: float = 0.0


@dataclass
class TopComment:
    message: str
    # url -> {"is_goods": bool, "title": str, "platform": str}
    jump_links: dict[str, dict[str, Any]] = field(default_factory=dict)


class MetadataProvider(Protocol):
    def get_video_info(self, video_id: str) -> VideoInfo: ...

    def get_top_comment(self, video_id: str) -> TopComment | None: ...

    def get_captions(self, video_id: str) -> list[CaptionLine]: ...


def extract_video_id(url: str) -> str:
    """Extract the video ID from a YouTube URL."""
    patterns = [
        r"(?:v=|/v/|youtu\.be/|/shorts/)([a-zA-Z0-9_-]{11})",
        r"^([a-zA-Z0-9_-]{11})$",
    ]
    for pattern in patterns:
        match = re.search(pattern, url)
        if match:
            return match.group(1)
    raise ValueError(f"Could not extract video ID from: {url}")


def _is_shop_link(url: str) -> bool:
    host = urlparse(url).netloc.lower()
    return any(marker in host for marker in SHOP_HOSTS)


def parse_jump_links(message: str) -> dict[str, dict[str, Any]]:
    links: dict[str, dict[str, Any]] = {}
    for url in _URL_RE.findall(message):
        url = url.rstrip(").,;")
        links[url] = {
            "is_goods": _is_shop_link(url),
            "title": url,
            "platform": urlparse(url).netloc,
        }
    return links


class YouTubeMetadata:
    def __init__(self, cookies_path: str | None = None, languages: list[str] | None = None) -> None:
        self.cookies_path = cookies_path
        self.languages = languages or ["en"]
        self._meta: dict[str, dict[str, Any]] = {}

    def _dump_json(self, video_id: str) -> dict[str, Any]:
        if video_id in self._meta:
            return self._meta[video_id]
        cmd = [
            sys.executable, "-m", "yt_dlp",
            "--dump-json", "--skip-download",
            "--write-comments",
            "--extractor-args", "youtube:max_comments=20,all,0,0",
            f"https://www.youtube.com/watch?v={video_id}",
        ]
        if self.cookies_path:
            cmd.extend(["--cookies", self.cookies_path])

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=180)
        if result.returncode != 0:
            raise MetadataError(f"yt-dlp metadata fetch failed.\nstderr: {result.stderr}")
        try:
            meta = json.loads(result.stdout)
        except ValueError as e:
            raise MetadataError(f"yt-dlp returned invalid JSON: {e}") from e
        self._meta[video_id] = meta
        return meta

    def get_video_info(self, video_id: str) -> VideoInfo:
        meta = self._dump_json(video_id)
        return VideoInfo(
            title=meta.get("title", ""),
            owner_id=str(meta.get("channel_id") or meta.get("uploader_id") or ""),
            duration=float(meta.get("duration") or 0),
        )

    def get_top_comment(self, video_id: str) -> TopComment | None:
        comments = self._dump_json(video_id).get("comments") or []
        pinned = next((c for c in comments if c.get("is_pinned")), None)
        if pinned is None:
            return None
        message = pinned.get("text", "")
        return TopComment(message=message, jump_links=parse_jump_links(message))

    def get_captions(self, video_id: str) -> list[CaptionLine]:
        from youtube_transcript_api import (
            NoTranscriptFound,
            TranscriptsDisabled,
            YouTubeTranscriptApi,
        )

        ytt_api = YouTubeTranscriptApi()
        try:
            transcript = ytt_api.fetch(video_id, languages=self.languages)
        except (NoTranscriptFound, TranscriptsDisabled):
            return []
        except Exception as e:
            raise MetadataError(f"caption fetch failed: {e}") from e

        lines = []
        for snippet in transcript:
            text = snippet.text.strip()
            if text:
                lines.append(CaptionLine(start=snippet.start, end=snippet.start + snippet.duration, content=text))
        return lines
