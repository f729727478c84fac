"""Fact checking agent — extract checkable claims, then verify each one.

Inputs:
    - speech aggregation output (transcript)
Outputs:
    - fact_checks: FactCheck dicts (claim, verdict, confidence, sources, explanation)
    - claims_extracted
Config:
    - agents.fact_check.max_claims
"""

from typing import List, Mapping

from agents.base import BaseAgent, transcript_excerpt
from lib.registry import AgentKind
from lib.results import FactCheck

CLAIMS_PROMPT = """Extract up to {max_claims} specific, checkable factual claims from this discussion.
Prefer statistics, dates, named studies and statements of fact over opinions.

Transcript:
{content}

Return JSON:
{{"claims": [{{"claim": "exact or lightly paraphrased claim", "speaker": "name"}}]}}"""

CHECK_PROMPT = """Fact-check this claim and return JSON with:
verdict (TRUE/FALSE/MIXED/UNVERIFIED), confidence (0-1), explanation, sources (list of strings).

Claim: "{claim}"
Said by: {speaker}"""


def extract_claims(payload, max_claims: int) -> List[dict]:
    if isinstance(payload, dict):
        payload = payload.get("claims", [])
    if not isinstance(payload, list):
        return []
    claims = []
    for item in payload:
        if isinstance(item, str):
            item = {"claim": item}
        if isinstance(item, dict) and str(item.get("claim", "")).strip():
            claims.append({"claim": str(item["claim"]).strip(), "speaker": item.get("speaker") or "unknown"})
    return claims[:max_claims]


class FactCheckAgent(BaseAgent):
    kind = AgentKind.FACT_CHECK
    name = "fact_check"

    async def execute(self, inputs: Mapping[str, dict]) -> dict:
        aggregated = self.upstream(inputs, AgentKind.SPEECH_AGGREGATION)
        max_claims = int(self.settings.get("max_claims", 5))
        client = self.llm()

        payload = await client.complete_json(CLAIMS_PROMPT.format(
            max_claims=max_claims,
            content=transcript_excerpt(aggregated.get("transcript", "")),
        ))
        claims = extract_claims(payload, max_claims)
        total_steps = len(claims) + 1
        self.report_progress(1, total_steps, f"{len(claims)} claims")

        fact_checks = []
        for step, claim in enumerate(claims, start=2):
            result = await client.complete_json(CHECK_PROMPT.format(**claim))
            if not isinstance(result, dict):
                result = {}
            result.pop("claim", None)
            fact_checks.append(FactCheck.model_validate({"claim": claim["claim"], **result}))
            self.report_progress(step, total_steps)

        verdicts = [fc.verdict.value for fc in fact_checks]
        self.logger.info(f"Checked {len(fact_checks)} claims: {verdicts}")
        return {
            "fact_checks": [fc.model_dump() for fc in fact_checks],
            "claims_extracted": len(claims),
        }
