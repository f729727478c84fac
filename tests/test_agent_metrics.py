"""Tests for the credibility and communication agents."""

import pytest

from agents.communication import CommunicationAgent
from agents.credibility import CredibilityAgent
from lib.errors import AgentError
from tests.conftest import make_agent

CREDIBILITY = {
    "sourceReliability": 80, "factAccuracy": 70, "citationQuality": 60,
    "expertConsensus": 65, "dataTransparency": 50, "methodologyClarity": 75,
}


class TestCredibilityAgent:
    @pytest.mark.asyncio
    async def test_scores(self, agent_context, analysis_outputs):
        agent = make_agent(CredibilityAgent, agent_context, {"credibility_metrics": CREDIBILITY})
        result = await agent.execute({"N5": analysis_outputs["N5"]})

        assert result["credibility_metrics"]["source_reliability"] == 80
        assert result["credibility_metrics"]["methodology_clarity"] == 75
        assert agent_context.reported == [33, 66, 100]

    @pytest.mark.asyncio
    async def test_unwrapped_payload(self, agent_context, analysis_outputs):
        agent = make_agent(CredibilityAgent, agent_context, CREDIBILITY)
        result = await agent.execute({"N5": analysis_outputs["N5"]})
        assert result["credibility_metrics"]["fact_accuracy"] == 70

    @pytest.mark.asyncio
    async def test_missing_group_fails(self, agent_context, analysis_outputs):
        agent = make_agent(CredibilityAgent, agent_context, {}, stage_id="N9")
        with pytest.raises(AgentError, match="no credibility_metrics"):
            await agent.execute({"N5": analysis_outputs["N5"]})

    @pytest.mark.asyncio
    async def test_incomplete_group_fails_stage(self, agent_context, analysis_outputs):
        agent = make_agent(CredibilityAgent, agent_context, {"credibility_metrics": {"sourceReliability": 80}}, stage_id="N9")
        with pytest.raises(AgentError) as exc_info:
            await agent.invoke({"N5": analysis_outputs["N5"]})
        assert exc_info.value.stage_id == "N9"

    @pytest.mark.asyncio
    async def test_empty_transcript(self, agent_context):
        agent = make_agent(CredibilityAgent, agent_context)
        with pytest.raises(AgentError, match="empty transcript"):
            await agent.execute({"N5": {"_agent": "speech_aggregation", "transcript": "  "}})
        agent.fake_llm.complete_json.assert_not_called()


class TestCommunicationAgent:
    @pytest.mark.asyncio
    async def test_scores_clamped(self, agent_context, analysis_outputs):
        payload = {"communication_metrics": {
            "clarity": 140, "engagement": 60, "persuasiveness": 55,
            "emotionalAppeal": 40, "logicalStructure": 70, "audienceAdaptation": -3,
        }}
        agent = make_agent(CommunicationAgent, agent_context, payload)
        result = await agent.execute({"N5": analysis_outputs["N5"]})

        metrics = result["communication_metrics"]
        assert metrics["clarity"] == 100
        assert metrics["audience_adaptation"] == 0
        assert metrics["logical_structure"] == 70
