"""Bias detection agent — cognitive and rhetorical biases in the discussion.

Inputs:
    - speech aggregation output (transcript)
Outputs:
    - biases: BiasDetection dicts (type, severity, description, examples, confidence)
    - bias_metrics: six bias scores (0-100, higher means more bias)
"""

from typing import Mapping

from agents.base import BaseAgent, transcript_excerpt
from lib.registry import AgentKind
from lib.results import BiasDetection, BiasMetrics, parse_metrics

BIAS_PROMPT = """Identify cognitive and rhetorical biases in this discussion.

Transcript:
{content}

Return JSON:
{{
  "biases": [
    {{"type": "Confirmation Bias", "severity": "LOW|MEDIUM|HIGH", "description": "...",
      "examples": ["quote"], "confidence": 0.0-1.0}}
  ],
  "bias_metrics": {{"confirmationBias": 0-100, "selectionBias": 0-100, "authorityBias": 0-100,
                   "anchoringBias": 0-100, "availabilityBias": 0-100, "framingEffect": 0-100}}
}}"""


class BiasAgent(BaseAgent):
    kind = AgentKind.BIAS
    name = "bias"

    async def execute(self, inputs: Mapping[str, dict]) -> dict:
        aggregated = self.upstream(inputs, AgentKind.SPEECH_AGGREGATION)
        self.report_progress(1, 2, "requesting analysis")
        payload = await self.llm().complete_json(
            BIAS_PROMPT.format(content=transcript_excerpt(aggregated.get("transcript", "")))
        )
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")

        biases = [
            BiasDetection.model_validate(b)
            for b in payload.get("biases", []) or []
            if isinstance(b, dict) and b.get("type")
        ]
        metrics = parse_metrics(BiasMetrics, payload.get("bias_metrics") or payload.get("biasMetrics"))
        self.report_progress(2, 2)

        self.logger.info(f"{len(biases)} biases detected")
        return {
            "biases": [b.model_dump() for b in biases],
            "bias_metrics": metrics.model_dump() if metrics else None,
        }
