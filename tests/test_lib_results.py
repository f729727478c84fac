"""Tests for lib.results module."""

import pytest
from pydantic import ValidationError

from agents import default_registry
from lib.errors import IncompleteAggregation
from lib.registry import AgentKind
from lib.results import (
    AnalysisResult,
    BiasDetection,
    CredibilityMetrics,
    FactCheck,
    ResultAggregator,
    Severity,
    Verdict,
    merge_outputs,
    parse_metrics,
)
from tests.conftest import make_registry


@pytest.fixture
def aggregator(sample_config):
    return ResultAggregator(default_registry(sample_config), "N11")


def _aggregate(aggregator, outputs):
    return aggregator.aggregate(outputs, run_id="run_1", video_url="https://youtu.be/abcdefghijk")


class TestResultAggregator:
    def test_required_stages_are_report_dependencies(self, aggregator):
        assert aggregator.required_stage_ids == frozenset({"N6", "N7", "N8", "N9", "N10"})

    def test_unknown_report_stage(self, sample_config):
        with pytest.raises(KeyError):
            ResultAggregator(default_registry(sample_config), "N99")

    def test_full_result(self, aggregator, analysis_outputs):
        result = _aggregate(aggregator, analysis_outputs)

        assert result.id == "run_1"
        assert result.title == "AI Panel Analysis"
        assert result.duration == 600.0
        assert [s.name for s in result.speakers] == ["Bob Lee", "Dr. Jane Smith"]
        assert result.fact_checks[0].verdict == Verdict.FALSE
        assert result.biases[0].severity == Severity.MEDIUM
        assert result.overall_sentiment == 0.4
        assert result.credibility_metrics.fact_accuracy == 70
        assert result.bias_metrics.authority_bias == 55
        assert result.summary == "A lively panel."
        assert result.key_findings == ["One false claim"]

    def test_absent_metric_groups_stay_none(self, aggregator, analysis_outputs):
        result = _aggregate(aggregator, analysis_outputs)
        assert result.communication_metrics is None
        assert result.emotional_metrics is None

    def test_emotions_attached_to_speakers(self, aggregator, analysis_outputs):
        result = _aggregate(aggregator, analysis_outputs)
        bob, jane = result.speakers

        assert bob.emotion_profile.dominant == "joy"
        assert jane.emotion_profile is None
        assert jane.segments[1].emotions[0].emotion == "joy"
        assert bob.segments[0].emotions == []

    def test_mismatched_segment_emotions_ignored(self, aggregator, analysis_outputs):
        analysis_outputs["N6"]["segment_emotions"]["speaker_2"] = [[{"emotion": "joy", "score": 1.0}]]
        result = _aggregate(aggregator, analysis_outputs)
        assert all(seg.emotions == [] for seg in result.speakers[1].segments)

    def test_missing_required_stage(self, aggregator, analysis_outputs):
        del analysis_outputs["N7"]
        del analysis_outputs["N9"]
        with pytest.raises(IncompleteAggregation) as exc_info:
            _aggregate(aggregator, analysis_outputs)
        assert exc_info.value.missing_stage_ids == ["N7", "N9"]

    def test_optional_report_missing(self, aggregator, analysis_outputs):
        del analysis_outputs["N11"]
        result = _aggregate(aggregator, analysis_outputs)
        assert result.title == "Panel: The Future of AI"
        assert result.summary is None
        assert result.key_findings == []

    def test_only_direct_dependencies_required(self):
        registry = make_registry({"A": [], "B": ["A"], "C": ["A"], "R": ["B", "C"]})
        aggregator = ResultAggregator(registry, "R")
        assert aggregator.missing({"A": {}, "C": {}}) == ["B"]
        with pytest.raises(IncompleteAggregation) as exc_info:
            aggregator.aggregate({"A": {}, "C": {}}, run_id="r", video_url="v")
        assert exc_info.value.missing_stage_ids == ["B"]

    def test_camel_case_dump(self, aggregator, analysis_outputs):
        data = _aggregate(aggregator, analysis_outputs).model_dump(mode="json", by_alias=True)

        assert data["videoUrl"] == "https://youtu.be/abcdefghijk"
        assert data["factChecks"][0]["verdict"] == "FALSE"
        assert data["credibilityMetrics"]["sourceReliability"] == 80
        assert data["communicationMetrics"] is None
        assert data["speakers"][0]["timeSpoken"] == 10.0
        assert data["speakers"][0]["emotionProfile"]["dominant"] == "joy"


class TestMergeOutputs:
    def test_nothing_completed(self):
        result = merge_outputs({}, run_id="r", video_url="v.mp4")
        assert result.title == "v.mp4"
        assert result.speakers == []
        assert result.overall_sentiment is None

    def test_visual_speakers_used_without_aggregation(self):
        by_kind = {
            AgentKind.SPEAKER_IDENTIFICATION: {"speakers": [{"id": "speaker_1", "name": "Speaker A"}]},
        }
        result = merge_outputs(by_kind, run_id="r", video_url="v.mp4")
        assert [s.name for s in result.speakers] == ["Speaker A"]

    def test_stage_statuses_kept(self):
        result = merge_outputs({}, run_id="r", video_url="v", stage_statuses={"N1": "completed"})
        assert result.stage_statuses == {"N1": "completed"}

    def test_result_is_immutable(self):
        result = merge_outputs({}, run_id="r", video_url="v")
        with pytest.raises(ValidationError):
            result.title = "changed"


class TestNormalization:
    @pytest.mark.parametrize("raw,expected", [
        ("true", Verdict.TRUE),
        (" Mixed ", Verdict.MIXED),
        ("partly true", Verdict.UNVERIFIED),
        (None, Verdict.UNVERIFIED),
    ])
    def test_verdict(self, raw, expected):
        assert FactCheck(claim="c", verdict=raw).verdict == expected

    def test_severity(self):
        assert BiasDetection(type="t", severity="high").severity == Severity.HIGH
        assert BiasDetection(type="t", severity="extreme").severity == Severity.LOW

    def test_confidence_clamped(self):
        assert FactCheck(claim="c", confidence=1.7).confidence == 1.0
        assert FactCheck(claim="c", confidence="n/a").confidence == 0.0

    def test_metrics_clamped_and_rounded(self):
        metrics = parse_metrics(CredibilityMetrics, {
            "sourceReliability": 120, "fact_accuracy": -5, "citation_quality": 59.6,
            "expert_consensus": 50, "data_transparency": 50, "methodology_clarity": 50,
        })
        assert metrics.source_reliability == 100
        assert metrics.fact_accuracy == 0
        assert metrics.citation_quality == 60

    def test_metrics_missing_field(self):
        with pytest.raises(ValidationError):
            parse_metrics(CredibilityMetrics, {"source_reliability": 50})

    def test_empty_metrics_is_none(self):
        assert parse_metrics(CredibilityMetrics, None) is None
        assert parse_metrics(CredibilityMetrics, {}) is None

    def test_sentiment_out_of_range(self):
        with pytest.raises(ValidationError):
            AnalysisResult(
                id="r", video_url="v", title="t", duration=0.0,
                speakers=[], fact_checks=[], biases=[], overall_sentiment=1.5,
            )
