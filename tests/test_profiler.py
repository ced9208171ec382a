"""Tests for the per-stage profiler."""

import time

from handorbit.profiler import PipelineProfiler


class TestPipelineProfiler:
    def test_known_stages_registered(self):
        p = PipelineProfiler()
        for name in PipelineProfiler.STAGES:
            assert p.get_stage_stats(name) is None
        assert p.summary() == {}

    def test_stage_timing(self):
        p = PipelineProfiler()
        with p.stage("inference"):
            time.sleep(0.01)
        stats = p.get_stage_stats("inference")
        assert stats.call_count == 1
        assert stats.avg_ms >= 5.0

    def test_record_and_summary(self):
        p = PipelineProfiler()
        for ms in (1.0, 2.0, 3.0, 4.0):
            p.record("integrate", ms)
        summary = p.summary()
        assert list(summary) == ["integrate"]
        assert summary["integrate"]["avg_ms"] == 2.5
        assert summary["integrate"]["min_ms"] == 1.0
        assert summary["integrate"]["max_ms"] == 4.0
        assert summary["integrate"]["calls"] == 4

    def test_window_is_rolling(self):
        p = PipelineProfiler(window_size=3)
        for ms in (100.0, 1.0, 1.0, 1.0):
            p.record("aggregate", ms)
        stats = p.get_stage_stats("aggregate")
        assert stats.max_ms == 1.0
        assert stats.call_count == 4

    def test_custom_stage(self):
        p = PipelineProfiler()
        p.record("decode", 0.5)
        assert p.get_stage_stats("decode").avg_ms == 0.5

    def test_disabled(self):
        p = PipelineProfiler()
        p.enabled = False
        with p.stage("interpret"):
            pass
        assert p.summary() == {}

    def test_stage_records_on_exception(self):
        p = PipelineProfiler()
        try:
            with p.stage("inference"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert p.get_stage_stats("inference").call_count == 1

    def test_reset(self):
        p = PipelineProfiler()
        p.record("interpret", 1.0)
        p.reset()
        assert p.summary() == {}
