"""Media/input source — turns an opaque video reference into a MediaSource.

YouTube links are looked up through the YouTube Data API; anything else must be
a readable local media file. Any failure raises InputUnavailable, which fails
the run before a single stage starts.
"""

import asyncio
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from lib import ffprobe
from lib.errors import InputUnavailable
from lib.llm import ServiceError, api_key

logger = logging.getLogger("thoughtgraph.media")

YOUTUBE_ID_RE = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|embed/|shorts/|live/)|youtu\.be/)([A-Za-z0-9_-]{11})"
)
ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


@dataclass(frozen=True)
class MediaSource:
    reference: str
    kind: str  # "youtube" or "file"
    title: str
    duration_seconds: float
    video_id: Optional[str] = None
    local_path: Optional[Path] = None
    description: str = ""
    channel: str = ""

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "kind": self.kind,
            "title": self.title,
            "duration_seconds": self.duration_seconds,
            "video_id": self.video_id,
            "local_path": str(self.local_path) if self.local_path else None,
            "description": self.description,
            "channel": self.channel,
        }


def youtube_video_id(reference: str) -> Optional[str]:
    match = YOUTUBE_ID_RE.search(reference)
    return match.group(1) if match else None


def parse_iso8601_duration(value: str) -> float:
    """Convert a YouTube contentDetails duration (e.g. PT1H2M3S) to seconds."""
    match = ISO_DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"Unrecognized ISO 8601 duration: {value!r}")
    parts = {k: float(v) if v else 0.0 for k, v in match.groupdict().items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


async def resolve_input(
    reference: str,
    config: dict,
    http: Optional[httpx.AsyncClient] = None,
) -> MediaSource:
    reference = (reference or "").strip()
    if not reference:
        raise InputUnavailable(reference, "empty reference")

    max_seconds = config.get("pipeline", {}).get("max_video_seconds")
    video_id = youtube_video_id(reference)
    if video_id:
        source = await _resolve_youtube(reference, video_id, config, http)
    else:
        source = await _resolve_file(reference)

    if max_seconds and source.duration_seconds > float(max_seconds):
        raise InputUnavailable(
            reference,
            f"video is {source.duration_seconds:.0f}s long (max {float(max_seconds):.0f}s)",
        )
    logger.info(f"Resolved input {reference}: {source.title!r} ({source.duration_seconds:.0f}s)")
    return source


async def _resolve_file(reference: str) -> MediaSource:
    path = Path(reference).expanduser()
    if not path.is_file():
        raise InputUnavailable(reference, "not a YouTube link or an existing media file")
    try:
        info = await asyncio.to_thread(ffprobe.media_info, path)
    except (subprocess.CalledProcessError, ValueError, FileNotFoundError) as e:
        raise InputUnavailable(reference, f"ffprobe failed: {e}") from e
    if not info.has_audio:
        raise InputUnavailable(reference, "media has no audio stream")
    return MediaSource(
        reference=reference,
        kind="file",
        title=path.stem,
        duration_seconds=info.duration,
        local_path=path,
    )


async def _resolve_youtube(
    reference: str,
    video_id: str,
    config: dict,
    http: Optional[httpx.AsyncClient],
) -> MediaSource:
    yt = config.get("services", {}).get("youtube", {})
    base = yt.get("base_url", "https://www.googleapis.com/youtube/v3")
    try:
        params = {"part": "snippet,contentDetails", "id": video_id, "key": api_key(yt, "youtube")}
    except ServiceError as e:
        raise InputUnavailable(reference, str(e)) from e

    timeout = float(yt.get("request_timeout_seconds", 30))
    try:
        if http is not None:
            response = await http.get(f"{base}/videos", params=params, timeout=timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{base}/videos", params=params, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPError as e:
        raise InputUnavailable(reference, f"YouTube Data API request failed: {e}") from e
    except ValueError as e:
        raise InputUnavailable(reference, f"YouTube Data API returned a non-JSON body: {e}") from e

    items = payload.get("items") if isinstance(payload, dict) else None
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        raise InputUnavailable(reference, f"video {video_id} not found")

    snippet = items[0].get("snippet", {})
    try:
        duration = parse_iso8601_duration(items[0].get("contentDetails", {}).get("duration", ""))
    except ValueError as e:
        raise InputUnavailable(reference, str(e)) from e

    return MediaSource(
        reference=reference,
        kind="youtube",
        title=snippet.get("title", video_id),
        duration_seconds=duration,
        video_id=video_id,
        description=snippet.get("description", ""),
        channel=snippet.get("channelTitle", ""),
    )
