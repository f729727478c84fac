"""Tests for the diarization agent."""

import json
import subprocess
from unittest.mock import patch

import httpx
import pytest

from agents.diarize import DiarizerAgent, build_diarized
from lib.errors import AgentError
from tests.conftest import make_agent

DEEPGRAM_RESPONSE = {
    "results": {
        "utterances": [
            {"speaker": 0, "start": 0.0, "end": 1.5, "transcript": "Hello there.", "confidence": 0.9},
            {"speaker": 1, "start": 2.0, "end": 3.0, "transcript": "Hi.", "confidence": 0.8},
        ],
        "channels": [{
            "alternatives": [
                {"words": [
                    {"word": "hello", "punctuated_word": "Hello", "start": 0.0, "end": 0.5, "confidence": 0.9, "speaker": 0},
                    {"word": "there", "punctuated_word": "there.", "start": 0.6, "end": 1.5, "confidence": 0.9, "speaker": 0},
                    {"word": "hi", "start": 2.0, "end": 3.0, "confidence": 0.8, "speaker": 1},
                ]},
                {"words": [{"word": "ignored", "start": 0.0, "end": 1.0}]},
            ],
        }],
    },
}


def _inputs(tmp_path):
    return {
        "N1": {"_agent": "fetcher", "media_path": str(tmp_path / "media.mp4")},
        "N2": {"_agent": "speaker_identification", "speakers": [{"id": "speaker_1"}, {"id": "speaker_2"}]},
    }


@pytest.fixture
def deepgram(monkeypatch):
    """Route the agent's httpx client to a mock Deepgram endpoint; returns the captured requests."""
    monkeypatch.setenv("DEEPGRAM_API_KEY", "dg-key")
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=DEEPGRAM_RESPONSE)

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        httpx, "AsyncClient", lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs)
    )
    return requests


class TestBuildDiarized:
    def test_utterances(self):
        diarized = build_diarized(DEEPGRAM_RESPONSE)
        assert diarized["utterances"][0] == {
            "speaker": 0, "start": 0.0, "end": 1.5, "text": "Hello there.", "confidence": 0.9,
        }

    def test_words_from_first_alternative(self):
        words = build_diarized(DEEPGRAM_RESPONSE)["words"]
        assert [w["word"] for w in words] == ["Hello", "there.", "hi"]
        assert words[2]["speaker"] == 1

    def test_empty_response(self):
        assert build_diarized({}) == {"utterances": [], "words": []}


class TestDiarizerAgent:
    @pytest.mark.asyncio
    async def test_diarize(self, agent_context, tmp_path, deepgram):
        agent = make_agent(DiarizerAgent, agent_context)
        agent.work_path("audio", "audio.m4a").write_bytes(b"audio-bytes")

        result = await agent.execute(_inputs(tmp_path))

        assert result["speaker_labels"] == [0, 1]
        assert result["utterance_count"] == 2
        assert result["word_count"] == 3
        assert result["model"] == "nova-3"

        request = deepgram[0]
        assert request.headers["Authorization"] == "Token dg-key"
        assert request.url.params["diarize"] == "true"
        assert request.url.params["model"] == "nova-3"
        assert request.content == b"audio-bytes"

        saved = json.loads((agent_context.work_dir / "deepgram.json").read_text())
        assert saved == DEEPGRAM_RESPONSE
        assert agent_context.reported == [25, 50, 75, 100]

    @pytest.mark.asyncio
    async def test_missing_key(self, agent_context, tmp_path, monkeypatch):
        monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
        agent = make_agent(DiarizerAgent, agent_context, stage_id="N3")
        agent.work_path("audio", "audio.m4a").write_bytes(b"audio-bytes")

        with pytest.raises(AgentError, match="DEEPGRAM_API_KEY"):
            await agent.invoke(_inputs(tmp_path))

    @pytest.mark.asyncio
    async def test_failed_extraction_is_redone_on_retry(self, agent_context, tmp_path, deepgram):
        agent = make_agent(DiarizerAgent, agent_context)
        calls = []

        def ffmpeg(cmd, **kwargs):
            calls.append(cmd)
            out = cmd[-1]
            if len(calls) == 1:
                with open(out, "wb") as f:
                    f.write(b"partial")
                raise subprocess.CalledProcessError(1, cmd)
            with open(out, "wb") as f:
                f.write(b"complete-audio")
            return subprocess.CompletedProcess(cmd, 0, "", "")

        with patch("agents.diarize.subprocess.run", side_effect=ffmpeg):
            with pytest.raises(subprocess.CalledProcessError):
                await agent.execute(_inputs(tmp_path))
            audio_dir = agent_context.work_dir / "audio"
            assert list(audio_dir.iterdir()) == []

            await agent.execute(_inputs(tmp_path))

        assert len(calls) == 2
        assert deepgram[0].content == b"complete-audio"
        assert [p.name for p in audio_dir.iterdir()] == ["audio.m4a"]
