"""SRT subtitle utilities for the transcription stage."""

from typing import Iterable, List


def fmt_timecode(seconds: float) -> str:
    """Format seconds as SRT timecode: HH:MM:SS,mmm"""
    seconds = max(0, seconds)
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    ms = int((seconds % 1) * 1000)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def build_srt(words: Iterable[dict], words_per_block: int = 5, speakers: dict = None) -> str:
    """Group timed words into numbered SRT blocks.

    Each word needs "start", "end" and "word" (or "punctuated_word"). When
    `speakers` maps a word's "speaker" label to a display name, each block is
    prefixed with the name of the speaker of its first word.
    """
    words = list(words)
    blocks: List[str] = []
    for idx, i in enumerate(range(0, len(words), words_per_block), start=1):
        chunk = words[i : i + words_per_block]
        text = " ".join(w.get("punctuated_word", w.get("word", "")) for w in chunk)
        if speakers is not None and chunk[0].get("speaker") in speakers:
            text = f"{speakers[chunk[0]['speaker']]}: {text}"
        blocks.append(
            f"{idx}\n"
            f"{fmt_timecode(chunk[0].get('start', 0))} --> {fmt_timecode(chunk[-1].get('end', 0))}\n"
            f"{text}\n"
        )
    return "\n".join(blocks)
