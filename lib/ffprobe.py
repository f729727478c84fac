"""FFprobe wrapper — media facts the fetcher and speaker identification need."""

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class MediaInfo:
    duration: float
    width: Optional[int]
    height: Optional[int]
    has_audio: bool
    has_video: bool


def probe(path: Path) -> dict:
    """Run ffprobe and return parsed JSON with format + streams info.

    Raises subprocess.CalledProcessError if ffprobe fails.
    """
    cmd = [
        "ffprobe", "-v", "quiet",
        "-print_format", "json",
        "-show_format", "-show_streams",
        str(path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    return json.loads(result.stdout)


def summarize(data: dict) -> MediaInfo:
    """Reduce raw ffprobe output to the fields the pipeline uses."""
    streams = data.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    return MediaInfo(
        duration=float(data.get("format", {}).get("duration", 0) or 0),
        width=int(video["width"]) if video and "width" in video else None,
        height=int(video["height"]) if video and "height" in video else None,
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
        has_video=video is not None,
    )


def media_info(path: Path) -> MediaInfo:
    return summarize(probe(path))
