"""
Audio transcription fallback for videos without captions.

Downloads the audio track with yt-dlp and sends it to Deepgram. Endpoints
are tried in order; the error from the last one is raised. Requires
DEEPGRAM_API_KEY.
"""

import logging
import mimetypes
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Protocol

import httpx

from .errors import TranscriptionError
from .reconcile import CaptionLine

logger = logging.getLogger(__name__)

DEEPGRAM_API_URL = "https://api.deepgram.com/v1/listen"


class Transcriber(Protocol):
    def transcribe(self, video_id: str) -> list[dict]: ...


def timing_table_from_segments(segments: list[dict]) -> list[CaptionLine]:
    """Build caption lines from transcription segments.

    Blank segments and segments repeating an earlier text are dropped, so the
    table can be shorter than the raw segment list.
    """
    seen: set[str] = set()
    lines: list[CaptionLine] = []
    for seg in segments:
        text = (seg.get("text") or "").strip()
        if not text or text in seen:
            continue
        seen.add(text)
        lines.append(CaptionLine(
            start=float(seg.get("start") or 0),
            end=float(seg.get("end") or 0),
            content=text,
        ))
    return lines


def download_audio(video_id: str, output_dir: Path, cookies_path: str | None = None) -> Path:
    """Download the audio track of a YouTube video using yt-dlp."""
    cmd = [
        sys.executable, "-m", "yt_dlp",
        "-f", "bestaudio[abr<=96]/bestaudio",
        "-o", str(output_dir / "audio.%(ext)s"),
        f"https://www.youtube.com/watch?v={video_id}",
    ]
    if cookies_path:
        cmd.extend(["--cookies", cookies_path])

    result = subprocess.run(cmd, capture_output=True, text=True, timeout=600)
    if result.returncode != 0:
        raise TranscriptionError(f"yt-dlp audio download failed.\nstderr: {result.stderr}")

    candidates = sorted(output_dir.glob("audio.*"))
    if not candidates:
        raise TranscriptionError(f"Download appeared to succeed but no audio file found in {output_dir}")
    return candidates[0]


class DeepgramTranscriber:
    def __init__(
        self,
        api_key: str | None = None,
        endpoints: list[str] | None = None,
        cookies_path: str | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.api_key = api_key or os.environ.get("DEEPGRAM_API_KEY")
        self.endpoints = endpoints or [DEEPGRAM_API_URL]
        self.cookies_path = cookies_path
        self.timeout = timeout

    def upload(self, audio: bytes, content_type: str = "audio/mpeg") -> dict:
        if not self.api_key:
            raise TranscriptionError("DEEPGRAM_API_KEY not set. Set it in .env or environment.")

        last_error: Exception | None = None
        for url in self.endpoints:
            try:
                response = httpx.post(
                    url,
                    headers={
                        "Authorization": f"Token {self.api_key}",
                        "Content-Type": content_type,
                    },
                    params={"model": "nova-3", "smart_format": "true", "utterances": "true"},
                    content=audio,
                    timeout=self.timeout,
                )
                if response.status_code != 200:
                    raise TranscriptionError(
                        f"Deepgram API error {response.status_code}: {response.text[:500]}"
                    )
                return response.json()
            except (httpx.HTTPError, TranscriptionError) as e:
                logger.warning("transcription endpoint %s failed: %s", url, e)
                last_error = e
        raise TranscriptionError(f"Deepgram transcription failed: {last_error}")

    def transcribe(self, video_id: str) -> list[dict]:
        with tempfile.TemporaryDirectory() as tmpdir:
            audio_path = download_audio(video_id, Path(tmpdir), self.cookies_path)
            size_mb = audio_path.stat().st_size / 1_000_000
            logger.info("uploading %s (%.1f MB) for transcription", audio_path.name, size_mb)
            content_type = mimetypes.guess_type(audio_path.name)[0] or "audio/mpeg"
            result = self.upload(audio_path.read_bytes(), content_type)

        utterances = result.get("results", {}).get("utterances", [])
        return [
            {"start": round(u["start"], 2), "end": round(u["end"], 2), "text": u["transcript"]}
            for u in utterances
        ]
