"""Speaker identification agent — who is on screen, where, and what they are called.

Inputs:
    - fetcher output (media_path, title, description)
Outputs:
    - frames/frame_<sec>.jpg (sampled key frames)
    - speakers: visual-only SpeakerProfile dicts, ordered by screen time
    - introductions: names/titles extracted from the video's title and description
Dependencies:
    - ffmpeg (frame extraction), numpy (position clustering)
Config:
    - agents.speaker_identification.frame_interval_seconds, scan_window_seconds, max_frames
    - agents.speaker_identification.context_service, context_model
"""

import asyncio
import re
import subprocess
from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np

from agents.base import BaseAgent
from lib import ffprobe
from lib.llm import ServiceError
from lib.registry import AgentKind
from lib.results import (
    BoundingBox,
    ContextualClues,
    SpeakerProfile,
    SpeakerRole,
    VisualFeatures,
)

VISION_PROMPT = """Analyze this video frame and identify:
1. Number of people visible
2. Who appears to be speaking (lip movement, gestures)
3. Seating arrangement and roles (moderator position, panel setup)
4. Professional context clues (clothing, setting, name plates)
5. Face positions in pixels for tracking

Return JSON format:
{
  "people": [
    {
      "position": {"x": 0, "y": 0, "width": 100, "height": 100},
      "isSpeaking": true,
      "roleClues": ["center_position", "formal_attire"],
      "faceFeatures": "description"
    }
  ],
  "sceneContext": "panel_discussion"
}"""

CONTEXT_PROMPT = """Analyze this video's title and description and extract speaker identification clues.

Title: {title}
Channel: {channel}
Description:
{description}

Identify introductions and name mentions, professional titles, and expertise areas.
List people in the order they are most likely to appear on screen, left to right.

Return JSON:
{{
  "introductions": [
    {{"name": "Dr. Smith", "title": "AI Researcher", "expertise": "machine learning"}}
  ]
}}"""

HONORIFIC_RE = re.compile(r"\b(Dr|Prof|Professor)\.?\s", re.IGNORECASE)

MODERATOR_CLUES = {"moderator", "host", "center_position", "holding_microphone", "asking_questions"}

# Horizontal distance (fraction of frame width) within which two detections
# are treated as the same seat.
POSITION_TOLERANCE = 0.12


class SpeakerIdentificationAgent(BaseAgent):
    kind = AgentKind.SPEAKER_IDENTIFICATION
    name = "speaker_identification"

    async def execute(self, inputs) -> dict:
        fetched = self.upstream(inputs, AgentKind.FETCHER)
        media_path = Path(fetched["media_path"])
        info = await asyncio.to_thread(ffprobe.media_info, media_path)

        timestamps = frame_timestamps(
            info.duration if info.has_video else 0.0,
            interval=float(self.settings.get("frame_interval_seconds", 5)),
            window=float(self.settings.get("scan_window_seconds", 120)),
            max_frames=int(self.settings.get("max_frames", 10)),
        )
        total_steps = len(timestamps) + 1

        detections: List[Tuple[float, dict]] = []
        analyzed = 0
        vision = self.llm()
        for i, ts in enumerate(timestamps, start=1):
            try:
                frame = await asyncio.to_thread(self._extract_frame, media_path, ts)
                analysis = await vision.complete_json(VISION_PROMPT, images=[frame])
            except (ServiceError, subprocess.CalledProcessError, OSError) as e:
                self.logger.warning(f"Frame analysis failed at {ts:.0f}s: {e}")
            else:
                analyzed += 1
                people = analysis.get("people", []) if isinstance(analysis, dict) else []
                detections.extend((ts, p) for p in people if isinstance(p, dict))
            self.report_progress(i, total_steps, f"frame at {ts:.0f}s")

        if timestamps and analyzed == 0:
            raise RuntimeError(f"None of {len(timestamps)} frames could be analyzed")

        introductions = await self._introductions(fetched)
        self.report_progress(total_steps, total_steps)

        clusters = cluster_detections(detections, frame_width=float(info.width or 1920))
        speakers = build_profiles(
            clusters,
            introductions,
            frames_analyzed=analyzed,
            frame_interval=float(self.settings.get("frame_interval_seconds", 5)),
        )
        self.logger.info(
            f"{len(speakers)} speakers from {len(detections)} detections "
            f"in {analyzed}/{len(timestamps)} frames"
        )

        return {
            "speakers": [s.model_dump() for s in speakers],
            "introductions": introductions,
            "frames_requested": len(timestamps),
            "frames_analyzed": analyzed,
        }

    def _extract_frame(self, media_path: Path, timestamp: float) -> bytes:
        frame_path = self.work_path("frames", f"frame_{int(timestamp):04d}.jpg")
        cmd = [
            "ffmpeg", "-y",
            "-ss", f"{timestamp:.2f}",
            "-i", str(media_path),
            "-frames:v", "1",
            "-vf", "scale=640:-2",
            "-q:v", "4",
            str(frame_path),
        ]
        subprocess.run(cmd, capture_output=True, text=True, check=True)
        return frame_path.read_bytes()

    async def _introductions(self, fetched: dict) -> List[dict]:
        if not (fetched.get("title") or fetched.get("description")):
            return []
        prompt = CONTEXT_PROMPT.format(
            title=fetched.get("title", ""),
            channel=fetched.get("channel", ""),
            description=(fetched.get("description") or "")[:4000],
        )
        try:
            analysis = await self.llm("context_").complete_json(prompt)
        except ServiceError as e:
            self.logger.warning(f"Contextual analysis failed: {e}")
            return []
        intros = analysis.get("introductions", []) if isinstance(analysis, dict) else []
        return [i for i in intros if isinstance(i, dict) and i.get("name")]


def frame_timestamps(duration: float, interval: float, window: float, max_frames: int) -> List[float]:
    """Sample times: every `interval` seconds within the opening `window`."""
    if duration <= 0 or interval <= 0:
        return []
    limit = min(duration, window)
    return [float(t) for t in np.arange(0.0, limit, interval)][:max_frames]


def cluster_detections(detections: Sequence[Tuple[float, dict]], frame_width: float) -> List[dict]:
    """Group per-frame detections into seats by horizontal face position.

    Returns clusters ordered left to right, each with "boxes", "timestamps",
    "clues" and "speaking" (number of frames the person appeared to speak).
    """
    clusters: List[dict] = []
    for ts, person in detections:
        pos = person.get("position") or {}
        try:
            box = [float(pos.get(k, 0)) for k in ("x", "y", "width", "height")]
        except (TypeError, ValueError):
            continue
        center = (box[0] + box[2] / 2) / frame_width

        best = None
        if clusters:
            distances = [abs(float(np.mean(c["centers"])) - center) for c in clusters]
            nearest = int(np.argmin(distances))
            if distances[nearest] <= POSITION_TOLERANCE:
                best = clusters[nearest]
        if best is None:
            best = {"centers": [], "boxes": [], "timestamps": set(), "clues": [], "speaking": 0}
            clusters.append(best)

        best["centers"].append(center)
        best["boxes"].append(box)
        best["timestamps"].add(ts)
        best["clues"].extend(str(c).lower() for c in person.get("roleClues", []) or [])
        if person.get("isSpeaking"):
            best["speaking"] += 1

    return sorted(clusters, key=lambda c: float(np.mean(c["centers"])))


def honorific(*texts: str) -> str:
    for text in texts:
        match = HONORIFIC_RE.search(f"{text or ''} ")
        if match:
            return "Prof." if match.group(1).lower().startswith("prof") else "Dr."
    return ""


def build_profiles(
    clusters: Sequence[dict],
    introductions: Sequence[dict],
    frames_analyzed: int,
    frame_interval: float,
) -> List[SpeakerProfile]:
    """Turn position clusters into visual speaker profiles.

    Clusters are ranked by screen time; the i-th introduction names the i-th
    ranked person. With no visual clusters, introductions alone become profiles.
    """
    ranked = sorted(clusters, key=lambda c: (-len(c["timestamps"]), -c["speaking"]))
    profiles: List[SpeakerProfile] = []

    for index, cluster in enumerate(ranked):
        intro = introductions[index] if index < len(introductions) else {}
        box = np.mean(np.array(cluster["boxes"], dtype=float), axis=0)
        seen = len(cluster["timestamps"])
        role = SpeakerRole.MODERATOR if MODERATOR_CLUES & set(cluster["clues"]) else SpeakerRole.UNKNOWN
        profiles.append(_profile(
            index, intro,
            confidence=min(1.0, seen / frames_analyzed) if frames_analyzed else 0.0,
            role=role,
            visual=VisualFeatures(
                position=BoundingBox(x=box[0], y=box[1], width=box[2], height=box[3]),
                screen_time=seen * frame_interval,
            ),
        ))

    if not ranked:
        for index, intro in enumerate(introductions):
            profiles.append(_profile(index, intro, confidence=0.5, role=SpeakerRole.UNKNOWN))

    return profiles


def generic_name(index: int) -> str:
    """Letter names for the first 26 people, numbers after that."""
    return f"Speaker {chr(65 + index)}" if index < 26 else f"Speaker {index + 1}"


def _profile(index, intro, confidence, role, visual=None) -> SpeakerProfile:
    name = intro.get("name") or generic_name(index)
    title = intro.get("title") or None
    return SpeakerProfile(
        id=f"speaker_{index + 1}",
        name=name,
        confidence=confidence,
        role=role,
        visual_features=visual or VisualFeatures(),
        contextual_clues=ContextualClues(
            introduced_as=f"{name}, {title}" if title else (intro.get("name") or None),
            title_mentioned=honorific(name, title or "") or title,
            expertise_area=intro.get("expertise") or None,
        ),
    )
