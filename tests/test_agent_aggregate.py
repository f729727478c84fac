"""Tests for the speech aggregation agent."""

import pytest

from agents.aggregate import (
    SpeechAggregationAgent,
    assign_role,
    fmt_clock,
    fuse_speakers,
    speaking_pattern,
)
from lib.results import ContextualClues, SpeakerProfile, SpeakerRole, VisualFeatures
from tests.conftest import make_agent


@pytest.fixture
def visual_profiles():
    return [
        SpeakerProfile(
            id="speaker_2",
            name="Dr. Jane Smith",
            confidence=0.6,
            visual_features=VisualFeatures(screen_time=30.0),
            contextual_clues=ContextualClues(title_mentioned="Dr."),
        ),
        SpeakerProfile(
            id="speaker_1",
            name="Bob Lee",
            confidence=0.8,
            visual_features=VisualFeatures(screen_time=60.0),
        ),
    ]


class TestRoles:
    @pytest.mark.parametrize("seconds,visual,title,expected", [
        (100, SpeakerRole.MODERATOR, "", SpeakerRole.MODERATOR),
        (400, SpeakerRole.UNKNOWN, "", SpeakerRole.MODERATOR),
        (10, SpeakerRole.UNKNOWN, "Prof.", SpeakerRole.PANELIST),
        (130, SpeakerRole.UNKNOWN, "", SpeakerRole.PANELIST),
        (10, SpeakerRole.UNKNOWN, "", SpeakerRole.GUEST),
    ])
    def test_assign_role(self, seconds, visual, title, expected):
        assert assign_role(seconds, visual, title) == expected

    def test_speaking_pattern(self):
        assert speaking_pattern(301) == "frequent"
        assert speaking_pattern(121) == "moderate"
        assert speaking_pattern(120) == "occasional"

    def test_fmt_clock(self):
        assert fmt_clock(261) == "04:21"
        assert fmt_clock(3725) == "62:05"
        assert fmt_clock(-5) == "00:00"


class TestFuseSpeakers:
    def test_voices_paired_by_rank(self, sample_segments, visual_profiles):
        speakers, speaker_map = fuse_speakers(sample_segments, visual_profiles)

        assert speaker_map == {0: "speaker_1", 1: "speaker_2"}
        bob, jane = speakers
        assert bob.name == "Bob Lee"
        assert bob.time_spoken == 339.0
        assert bob.role == SpeakerRole.MODERATOR
        assert bob.contextual_clues.speaking_pattern == "frequent"
        assert bob.confidence == pytest.approx((0.8 + 0.925) / 2)
        assert len(bob.segments) == 2
        assert jane.role == SpeakerRole.PANELIST
        assert jane.audio_features.speaking_time == 59.5
        assert jane.visual_features.screen_time == 30.0

    def test_unmatched_voices_get_new_profiles(self, sample_segments):
        speakers, speaker_map = fuse_speakers(sample_segments, [])

        assert [s.name for s in speakers] == ["Speaker A", "Speaker B"]
        assert speaker_map == {0: "speaker_1", 1: "speaker_2"}
        assert speakers[1].role == SpeakerRole.GUEST

    def test_silent_people_dropped(self, visual_profiles):
        segments = [{"speaker": 0, "start": 0.0, "end": 5.0, "text": "Hi", "confidence": 1.0}]
        speakers, _ = fuse_speakers(segments, visual_profiles)
        assert [s.id for s in speakers] == ["speaker_1"]

    def test_new_profiles_skip_names_already_seen(self):
        visual = [SpeakerProfile(id="speaker_1", name="Speaker C", visual_features=VisualFeatures(screen_time=10.0))]
        segments = [
            {"speaker": 0, "start": 0.0, "end": 30.0, "text": "First", "confidence": 1.0},
            {"speaker": 1, "start": 30.0, "end": 50.0, "text": "Second", "confidence": 1.0},
            {"speaker": 2, "start": 50.0, "end": 60.0, "text": "Third", "confidence": 1.0},
        ]
        speakers, speaker_map = fuse_speakers(segments, visual)

        assert [s.name for s in speakers] == ["Speaker C", "Speaker B", "Speaker D"]
        assert speaker_map == {0: "speaker_1", 1: "speaker_2", 2: "speaker_4"}
        assert len({s.name for s in speakers}) == 3


class TestSpeechAggregationAgent:
    @pytest.mark.asyncio
    async def test_transcript_lines(self, agent_context, sample_segments, visual_profiles):
        inputs = {
            "N2": {"_agent": "speaker_identification", "speakers": [p.model_dump() for p in visual_profiles]},
            "N4": {"_agent": "transcriber", "segments": sample_segments},
        }
        agent = make_agent(SpeechAggregationAgent, agent_context)
        result = await agent.execute(inputs)

        lines = result["transcript"].split("\n")
        assert lines[0] == "[00:00] Bob Lee: Welcome everyone to the panel today"
        assert lines[1] == "[03:20] Dr. Jane Smith: Thanks for having me"
        assert lines[2].startswith("[04:21] Bob Lee:")
        assert result["speaker_map"] == {"0": "speaker_1", "1": "speaker_2"}
        assert result["speakers"][0]["role"] == SpeakerRole.MODERATOR
