"""Presentation view model — what the web UI renders for a finished analysis.

Only groups that were actually produced are included; an absent metric group
gets no radar chart rather than placeholder numbers.
"""

from typing import Dict, List, Optional

from lib.results import AnalysisResult

RADAR_AXES = {
    "credibility": (
        "credibility_metrics",
        "score",
        [
            ("Source Reliability", "source_reliability"),
            ("Fact Accuracy", "fact_accuracy"),
            ("Citation Quality", "citation_quality"),
            ("Expert Consensus", "expert_consensus"),
            ("Data Transparency", "data_transparency"),
            ("Methodology", "methodology_clarity"),
        ],
    ),
    "communication": (
        "communication_metrics",
        "score",
        [
            ("Clarity", "clarity"),
            ("Engagement", "engagement"),
            ("Persuasiveness", "persuasiveness"),
            ("Emotional Appeal", "emotional_appeal"),
            ("Logic Structure", "logical_structure"),
            ("Adaptation", "audience_adaptation"),
        ],
    ),
    "bias": (
        "bias_metrics",
        "risk",
        [
            ("Confirmation", "confirmation_bias"),
            ("Selection", "selection_bias"),
            ("Authority", "authority_bias"),
            ("Anchoring", "anchoring_bias"),
            ("Availability", "availability_bias"),
            ("Framing", "framing_effect"),
        ],
    ),
    "emotional": (
        "emotional_metrics",
        "score",
        [
            ("Self-Awareness", "self_awareness"),
            ("Empathy", "empathy"),
            ("Regulation", "emotional_regulation"),
            ("Social Skills", "social_skills"),
            ("Motivation", "motivation"),
            ("Adaptability", "adaptability"),
        ],
    ),
}


def sentiment_label(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    if value > 0.5:
        return "Positive"
    if value < -0.5:
        return "Negative"
    return "Neutral"


def radar_charts(result: AnalysisResult) -> Dict[str, List[dict]]:
    charts = {}
    for chart, (attr, value_key, axes) in RADAR_AXES.items():
        metrics = getattr(result, attr)
        if metrics is None:
            continue
        charts[chart] = [{"subject": label, value_key: getattr(metrics, field)} for label, field in axes]
    return charts


def speaker_timeline(result: AnalysisResult) -> List[dict]:
    rows = []
    for speaker in result.speakers:
        for seg in speaker.segments:
            rows.append({
                "speakerId": speaker.id,
                "name": speaker.name,
                "start": seg.start,
                "end": seg.end,
            })
    return sorted(rows, key=lambda r: r["start"])


def build_view(result: AnalysisResult) -> dict:
    tabs = ["overview"]
    if result.speakers:
        tabs.append("speakers")
    if any(s.emotion_profile for s in result.speakers) or result.overall_sentiment is not None:
        tabs.append("emotions")
    if result.fact_checks:
        tabs.append("facts")
    if result.biases or result.bias_metrics:
        tabs.append("bias")
    charts = radar_charts(result)
    if charts:
        tabs.append("radar")

    return {
        "title": result.title,
        "videoUrl": result.video_url,
        "tabs": tabs,
        "sentiment": {
            "value": result.overall_sentiment,
            "label": sentiment_label(result.overall_sentiment),
        },
        "radar": charts,
        "timeline": speaker_timeline(result),
        "verdictCounts": _counts(fc.verdict.value for fc in result.fact_checks),
        "severityCounts": _counts(b.severity.value for b in result.biases),
    }


def _counts(values) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return counts
