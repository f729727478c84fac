"""Communication analysis agent — how effectively the speakers get their points across."""

from agents.base import MetricGroupAgent
from lib.registry import AgentKind
from lib.results import CommunicationMetrics

COMMUNICATION_PROMPT = """Evaluate the communication effectiveness of the speakers in this discussion.
Score each dimension from 0 (very poor) to 100 (excellent).

Transcript:
{content}

Return JSON:
{{"communication_metrics": {{"clarity": 0, "engagement": 0, "persuasiveness": 0,
                            "emotionalAppeal": 0, "logicalStructure": 0, "audienceAdaptation": 0}}}}"""


class CommunicationAgent(MetricGroupAgent):
    kind = AgentKind.COMMUNICATION
    name = "communication"
    prompt = COMMUNICATION_PROMPT
    output_key = "communication_metrics"
    model_cls = CommunicationMetrics
