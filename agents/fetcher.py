"""Fetcher agent — obtain the media file for the resolved video source.

Inputs:
    - the run's MediaSource (no upstream stages)
Outputs:
    - media/<video id>.<ext> (downloaded media, YouTube sources only)
    - title, description, channel, duration_seconds, media_path
Dependencies:
    - yt-dlp (YouTube download)
Config:
    - agents.fetcher.format
"""

import asyncio
from pathlib import Path

from agents.base import BaseAgent
from lib.registry import AgentKind


class FetcherAgent(BaseAgent):
    kind = AgentKind.FETCHER
    name = "fetcher"

    async def execute(self, inputs) -> dict:
        if self.source is None:
            raise RuntimeError("No resolved media source for this run")

        if self.source.local_path is not None:
            media_path = Path(self.source.local_path)
            self.logger.info(f"Using local media: {media_path}")
            self.report_progress(1, 1)
        else:
            media_path = await asyncio.to_thread(self._download)

        size_mb = media_path.stat().st_size / 1e6
        self.logger.info(f"Media ready: {media_path.name} ({size_mb:.1f} MB)")

        return {
            "video_url": self.source.reference,
            "source_kind": self.source.kind,
            "video_id": self.source.video_id,
            "title": self.source.title,
            "description": self.source.description,
            "channel": self.source.channel,
            "duration_seconds": self.source.duration_seconds,
            "media_path": str(media_path),
            "size_mb": round(size_mb, 1),
        }

    def _download(self) -> Path:
        from yt_dlp import YoutubeDL

        out_dir = self.work_dir / "media"
        out_dir.mkdir(parents=True, exist_ok=True)

        def progress_hook(d: dict) -> None:
            if d.get("status") != "downloading":
                return
            total = d.get("total_bytes") or d.get("total_bytes_estimate")
            if total:
                self.report_progress(int(d.get("downloaded_bytes") or 0), int(total))

        opts = {
            "outtmpl": str(out_dir / "%(id)s.%(ext)s"),
            "format": self.settings.get("format", "best[height<=480]/best"),
            "progress_hooks": [progress_hook],
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "noplaylist": True,
        }

        self.logger.info(f"Downloading {self.source.reference}...")
        with YoutubeDL(opts) as ydl:
            info = ydl.extract_info(self.source.reference, download=True)
            if not info:
                raise RuntimeError(f"yt-dlp returned no info for {self.source.reference}")
            path = Path(ydl.prepare_filename(info))

        if not path.exists():
            # Post-processing may have changed the extension
            candidates = sorted(out_dir.glob(f"{info.get('id', '*')}.*"))
            if not candidates:
                raise RuntimeError(f"Download finished but no media file in {out_dir}")
            path = candidates[0]

        self.report_progress(1, 1)
        return path
