"""Report generation agent — title, executive summary and key findings.

Inputs:
    - emotion, fact check, bias, credibility and communication outputs
    - fetcher and speech aggregation outputs (title, speakers)
Outputs:
    - title, summary, key_findings
Config:
    - agents.reporter.max_tokens, max_findings
"""

import json
from typing import List, Mapping

from agents.base import BaseAgent
from lib.registry import AgentKind

REPORT_PROMPT = """You are writing the summary of an automated analysis of a video discussion.

Video title: {title}
Speakers: {speakers}

Analysis results (JSON):
{findings}

Write a concise report. Return JSON:
{{
  "title": "short descriptive title for the analysis",
  "summary": "2-4 sentence executive summary",
  "key_findings": ["finding 1", "finding 2"]
}}"""

SECTIONS = (
    (AgentKind.EMOTION, ("overall_sentiment", "emotional_metrics", "profiles")),
    (AgentKind.FACT_CHECK, ("fact_checks",)),
    (AgentKind.BIAS, ("biases", "bias_metrics")),
    (AgentKind.CREDIBILITY, ("credibility_metrics",)),
    (AgentKind.COMMUNICATION, ("communication_metrics",)),
)


def findings_digest(by_kind: Mapping[str, dict]) -> dict:
    """The parts of the analysis outputs the report is written from."""
    digest = {}
    for kind, keys in SECTIONS:
        output = by_kind.get(kind.value)
        if output:
            digest[kind.value] = {k: output.get(k) for k in keys if output.get(k) is not None}
    return digest


def clean_findings(value, limit: int) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()][:limit]


class ReportAgent(BaseAgent):
    kind = AgentKind.REPORTER
    name = "reporter"

    async def execute(self, inputs: Mapping[str, dict]) -> dict:
        by_kind = {o.get("_agent"): o for o in inputs.values()}
        digest = findings_digest(by_kind)
        if not digest:
            raise ValueError("malformed upstream data: no analysis outputs to report on")

        fetched = by_kind.get(AgentKind.FETCHER.value, {})
        speakers = by_kind.get(AgentKind.SPEECH_AGGREGATION.value, {}).get("speakers", [])
        speaker_names = ", ".join(f"{s['name']} ({s.get('role', 'unknown')})" for s in speakers) or "unknown"

        self.report_progress(1, 2, "writing report")
        payload = await self.llm().complete_json(REPORT_PROMPT.format(
            title=fetched.get("title") or "untitled",
            speakers=speaker_names,
            findings=json.dumps(digest, indent=1, default=str)[:20000],
        ))
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object, got {type(payload).__name__}")

        summary = str(payload.get("summary") or "").strip()
        if not summary:
            raise ValueError("model returned an empty summary")
        key_findings = clean_findings(
            payload.get("key_findings", payload.get("keyFindings")),
            int(self.settings.get("max_findings", 8)),
        )
        self.report_progress(2, 2)

        return {
            "title": str(payload.get("title") or fetched.get("title") or "").strip() or None,
            "summary": summary,
            "key_findings": key_findings,
        }
