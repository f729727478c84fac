"""Diarization agent — Deepgram Nova-3 speaker diarization via REST API.

Inputs:
    - fetcher output (media_path)
    - speaker identification output (number of people seen, logged only)
Outputs:
    - audio/audio.m4a (compact audio for upload)
    - deepgram.json (raw Deepgram response)
    - utterances: speaker-labelled utterances with word timestamps
    - words: every recognised word with its speaker label
Dependencies:
    - ffmpeg (audio extraction), httpx (Deepgram REST API)
Config:
    - agents.diarizer.model, language, smart_format
    - services.deepgram.base_url, request_timeout_seconds
Environment:
    - DEEPGRAM_API_KEY
"""

import asyncio
import subprocess
import uuid
from pathlib import Path

import httpx

from agents.base import BaseAgent
from lib.config import service_settings
from lib.llm import api_key
from lib.registry import AgentKind

DEEPGRAM_URL = "https://api.deepgram.com/v1/listen"


class DiarizerAgent(BaseAgent):
    kind = AgentKind.DIARIZER
    name = "diarizer"

    async def execute(self, inputs) -> dict:
        fetched = self.upstream(inputs, AgentKind.FETCHER)
        media_path = Path(fetched["media_path"])

        audio_path = self.work_path("audio", "audio.m4a")
        if not audio_path.exists():
            self.logger.info("Extracting audio to m4a...")
            await asyncio.to_thread(self._extract_audio, media_path, audio_path)
        audio_size_mb = audio_path.stat().st_size / 1e6
        self.logger.info(f"Audio file: {audio_size_mb:.1f} MB")
        self.report_progress(1, 4, "audio extracted")

        dg = service_settings(self.config, "deepgram")
        key = api_key(dg, "deepgram")
        params = {
            "model": self.settings.get("model", "nova-3"),
            "language": self.settings.get("language", "en"),
            "diarize": "true",
            "utterances": "true",
            "smart_format": str(self.settings.get("smart_format", True)).lower(),
            "punctuate": "true",
        }

        self.logger.info(f"Sending to Deepgram {params['model']} (this may take a few minutes)...")
        self.report_progress(2, 4, "uploading")
        async with httpx.AsyncClient() as client:
            response = await client.post(
                dg.get("base_url", DEEPGRAM_URL),
                params=params,
                headers={
                    "Authorization": f"Token {key}",
                    "Content-Type": "audio/mp4",
                },
                content=audio_path.read_bytes(),
                timeout=float(dg.get("request_timeout_seconds", 600)),
            )
        response.raise_for_status()
        raw_response = response.json()
        self.save_json("deepgram.json", raw_response)
        self.report_progress(3, 4, "response received")

        diarized = build_diarized(raw_response)
        labels = sorted({u["speaker"] for u in diarized["utterances"]})
        if "speaker_identification" in (o.get("_agent") for o in inputs.values()):
            seen = len(self.upstream(inputs, AgentKind.SPEAKER_IDENTIFICATION).get("speakers", []))
            self.logger.info(f"{len(labels)} voices diarized, {seen} people seen on screen")

        self.report_progress(4, 4)
        return {
            "utterances": diarized["utterances"],
            "words": diarized["words"],
            "speaker_labels": labels,
            "utterance_count": len(diarized["utterances"]),
            "word_count": len(diarized["words"]),
            "audio_size_mb": round(audio_size_mb, 1),
            "model": params["model"],
        }

    def _extract_audio(self, media_path: Path, audio_path: Path) -> None:
        # audio_path only ever holds a complete extraction
        partial = audio_path.with_name(f".{audio_path.stem}-{uuid.uuid4().hex[:8]}{audio_path.suffix}")
        cmd = [
            "ffmpeg", "-y",
            "-i", str(media_path),
            "-vn", "-c:a", "aac", "-b:a", "128k",
            str(partial),
        ]
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True)
            partial.replace(audio_path)
        finally:
            partial.unlink(missing_ok=True)


def build_diarized(raw: dict) -> dict:
    """Extract speaker-labelled utterances and words from a Deepgram response."""
    utterances = []
    for utt in raw.get("results", {}).get("utterances", []):
        utterances.append({
            "speaker": int(utt.get("speaker", 0)),
            "start": float(utt.get("start", 0)),
            "end": float(utt.get("end", 0)),
            "text": utt.get("transcript", ""),
            "confidence": float(utt.get("confidence", 0)),
        })

    words = []
    for ch in raw.get("results", {}).get("channels", []):
        for alt in ch.get("alternatives", [])[:1]:
            for w in alt.get("words", []):
                words.append({
                    "word": w.get("punctuated_word", w.get("word", "")),
                    "start": float(w.get("start", 0)),
                    "end": float(w.get("end", 0)),
                    "confidence": float(w.get("confidence", 0)),
                    "speaker": int(w.get("speaker", 0)),
                })

    return {"utterances": utterances, "words": words}
