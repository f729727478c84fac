"""Credibility analysis agent — how well-sourced and trustworthy the discussion is."""

from agents.base import MetricGroupAgent
from lib.registry import AgentKind
from lib.results import CredibilityMetrics

CREDIBILITY_PROMPT = """Assess the credibility of the arguments made in this discussion.
Score each dimension from 0 (very poor) to 100 (excellent).

Transcript:
{content}

Return JSON:
{{"credibility_metrics": {{"sourceReliability": 0, "factAccuracy": 0, "citationQuality": 0,
                          "expertConsensus": 0, "dataTransparency": 0, "methodologyClarity": 0}}}}"""


class CredibilityAgent(MetricGroupAgent):
    kind = AgentKind.CREDIBILITY
    name = "credibility"
    prompt = CREDIBILITY_PROMPT
    output_key = "credibility_metrics"
    model_cls = CredibilityMetrics
