"""Transcription agent — turn diarized utterances into transcript segments and SRT.

Inputs:
    - diarizer output (utterances, words)
Outputs:
    - subtitles/transcript.srt (full-video SRT, speaker-labelled)
    - segments: consecutive same-speaker utterances merged into segments
Config:
    - agents.transcriber.merge_gap_seconds, words_per_block
"""

from typing import List, Sequence

from agents.base import BaseAgent
from lib.registry import AgentKind
from lib.srt import build_srt


class TranscriberAgent(BaseAgent):
    kind = AgentKind.TRANSCRIBER
    name = "transcriber"

    async def execute(self, inputs) -> dict:
        diarized = self.upstream(inputs, AgentKind.DIARIZER)
        utterances = diarized.get("utterances", [])
        if not utterances:
            raise RuntimeError("No speech found in the diarized audio")

        segments = merge_utterances(
            utterances, max_gap=float(self.settings.get("merge_gap_seconds", 1.0))
        )
        self.report_progress(1, 2, f"{len(segments)} segments")

        labels = {label: f"Speaker {label}" for label in diarized.get("speaker_labels", [])}
        srt_path = self.work_path("subtitles", "transcript.srt")
        srt_path.write_text(build_srt(
            diarized.get("words", []),
            words_per_block=int(self.settings.get("words_per_block", 5)),
            speakers=labels,
        ))
        self.report_progress(2, 2)

        word_count = sum(len(s["text"].split()) for s in segments)
        self.logger.info(f"{len(segments)} segments, {word_count} words")
        return {
            "segments": segments,
            "srt_path": str(srt_path),
            "segment_count": len(segments),
            "word_count": word_count,
        }


def merge_utterances(utterances: Sequence[dict], max_gap: float = 1.0) -> List[dict]:
    """Merge consecutive utterances by the same speaker separated by <= max_gap seconds.

    Merged confidence is the duration-weighted mean of its parts.
    """
    segments: List[dict] = []
    for utt in sorted(utterances, key=lambda u: u["start"]):
        text = (utt.get("text") or "").strip()
        if not text:
            continue
        duration = max(0.0, utt["end"] - utt["start"])
        prev = segments[-1] if segments else None
        if prev and prev["speaker"] == utt["speaker"] and utt["start"] - prev["end"] <= max_gap:
            prev_duration = prev["end"] - prev["start"]
            total = prev_duration + duration
            if total > 0:
                prev["confidence"] = (
                    prev["confidence"] * prev_duration + utt.get("confidence", 0) * duration
                ) / total
            prev["end"] = max(prev["end"], utt["end"])
            prev["text"] = f"{prev['text']} {text}"
        else:
            segments.append({
                "speaker": utt["speaker"],
                "start": utt["start"],
                "end": utt["end"],
                "text": text,
                "confidence": float(utt.get("confidence", 0)),
            })
    return segments
