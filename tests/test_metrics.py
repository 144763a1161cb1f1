import pytest

from menta_bench.metrics import (
    INFERENCE_TIME_RATIO,
    OTPS_CEILING,
    MetricsAggregator,
    SampleMetrics,
)


def sample(**kwargs) -> SampleMetrics:
    defaults = dict(
        input_tokens=100,
        output_tokens=4,
        prompt_latency=0.1,
        generation_latency=0.5,
        first_token_latency=0.2,
    )
    defaults.update(kwargs)
    return SampleMetrics(**defaults)


def test_accuracy_and_counts():
    agg = MetricsAggregator()
    for correct in (True, True, False):
        agg.add(sample(), correct)
    summary = agg.summarize(elapsed=3.0)
    assert summary.total_samples == 3
    assert summary.correct == 2
    assert agg.incorrect == 1
    assert summary.accuracy == pytest.approx(200.0 / 3.0)
    assert f"{summary.accuracy:.1f}" == "66.7"


def test_latency_means_and_input_throughput():
    agg = MetricsAggregator()
    agg.add(sample(first_token_latency=0.2, prompt_latency=0.1), True, evaluation_time=1.0)
    agg.add(sample(first_token_latency=0.4, prompt_latency=0.3), False, evaluation_time=2.0)
    summary = agg.summarize(elapsed=3.5)
    assert summary.ttft == pytest.approx(0.3)
    assert summary.itps == pytest.approx(200 / 0.4)
    assert summary.oet == pytest.approx(1.5)
    assert summary.total_time == 3.5


def test_output_throughput_uses_inference_ratio():
    agg = MetricsAggregator()
    agg.add(sample(), True)
    agg.add(sample(), True)
    summary = agg.summarize(elapsed=2.0)
    # per-sample: 4 tokens / (0.5 s * ratio); wall-clock: 8 / ((2.0 - 0.2) * ratio)
    per_sample = 4 / (0.5 * INFERENCE_TIME_RATIO)
    wall_clock = 8 / (1.8 * INFERENCE_TIME_RATIO)
    assert summary.otps == pytest.approx(max(per_sample, wall_clock))


def test_wall_clock_estimate_wins_when_larger():
    agg = MetricsAggregator()
    agg.add(sample(output_tokens=5, generation_latency=10.0, prompt_latency=0.5), True)
    summary = agg.summarize(elapsed=1.0)
    assert summary.otps == pytest.approx(5 / (0.5 * INFERENCE_TIME_RATIO))


def test_output_throughput_capped():
    agg = MetricsAggregator()
    agg.add(sample(generation_latency=1e-6), True)
    assert agg.summarize(elapsed=1e-6).otps == OTPS_CEILING


def test_no_output_tokens_gives_zero_throughput():
    agg = MetricsAggregator()
    agg.add(sample(output_tokens=0), False)
    assert agg.summarize(elapsed=1.0).otps == 0.0


def test_out_of_memory_statistics():
    agg = MetricsAggregator()
    agg.add(sample(is_out_of_memory=True, oom_memory_gb=3.0), False)
    agg.add(sample(is_out_of_memory=True, oom_memory_gb=5.0), False)
    agg.add(sample(), True)
    agg.add(sample(), True)
    summary = agg.summarize(elapsed=1.0)
    assert summary.oom_count == 2
    assert summary.oom_rate == pytest.approx(50.0)
    assert summary.avg_oom_memory_gb == pytest.approx(4.0)
    assert summary.total_oom_memory_gb == pytest.approx(8.0)


def test_empty_run_summary_is_all_zero():
    summary = MetricsAggregator().summarize(elapsed=0.0)
    assert summary.total_samples == 0
    assert summary.accuracy == 0.0
    assert summary.ttft == 0.0
    assert summary.itps == 0.0
    assert summary.otps == 0.0
    assert summary.oom_rate == 0.0


def test_resource_figures_passed_through():
    agg = MetricsAggregator()
    agg.add(sample(), True)
    summary = agg.summarize(elapsed=1.0, cpu_percent=42.0, ram_gb=3.2, model_memory_gb=1.5)
    assert summary.cpu_percent == 42.0
    assert summary.ram_gb == 3.2
    assert summary.model_memory_gb == 1.5
    assert summary.to_dict()["input_tokens"] == 100


def test_reset_clears_totals():
    agg = MetricsAggregator()
    agg.add(sample(), True)
    agg.reset()
    assert agg.total_samples == 0
    assert agg.correct == 0
    assert agg.output_tokens == 0
