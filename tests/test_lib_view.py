"""Tests for lib.view module."""

import pytest

from agents import default_registry
from lib.results import ResultAggregator, merge_outputs
from lib.view import build_view, radar_charts, sentiment_label, speaker_timeline


@pytest.fixture
def result(sample_config, analysis_outputs):
    aggregator = ResultAggregator(default_registry(sample_config), "N11")
    return aggregator.aggregate(analysis_outputs, run_id="run_1", video_url="https://youtu.be/abcdefghijk")


class TestSentimentLabel:
    @pytest.mark.parametrize("value,label", [
        (0.8, "Positive"),
        (0.5, "Neutral"),
        (0.0, "Neutral"),
        (-0.51, "Negative"),
        (None, None),
    ])
    def test_thresholds(self, value, label):
        assert sentiment_label(value) == label


class TestRadarCharts:
    def test_only_present_groups(self, result):
        charts = radar_charts(result)
        assert set(charts) == {"credibility", "bias"}

    def test_axes(self, result):
        charts = radar_charts(result)
        assert charts["credibility"][0] == {"subject": "Source Reliability", "score": 80}
        assert charts["bias"][2] == {"subject": "Authority", "risk": 55}
        assert len(charts["bias"]) == 6


class TestBuildView:
    def test_view(self, result):
        view = build_view(result)

        assert view["title"] == "AI Panel Analysis"
        assert view["videoUrl"] == "https://youtu.be/abcdefghijk"
        assert view["tabs"] == ["overview", "speakers", "emotions", "facts", "bias", "radar"]
        assert view["sentiment"] == {"value": 0.4, "label": "Neutral"}
        assert view["verdictCounts"] == {"FALSE": 1}
        assert view["severityCounts"] == {"MEDIUM": 1}

    def test_timeline_sorted(self, result):
        timeline = speaker_timeline(result)
        assert [row["start"] for row in timeline] == [0.0, 10.0, 21.0]
        assert timeline[1]["name"] == "Dr. Jane Smith"

    def test_empty_result(self):
        view = build_view(merge_outputs({}, run_id="r", video_url="v.mp4"))
        assert view["tabs"] == ["overview"]
        assert view["radar"] == {}
        assert view["sentiment"]["label"] is None
        assert view["timeline"] == []
