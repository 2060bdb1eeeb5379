import pytest

from pvfilt.estimate import Estimate, Estimator, estimate_completion
from pvfilt.sampler import Sample
from pvfilt.series import TimeSeries


def series_of(points, denominator=10):
    return [Sample(float(t), n, denominator) for t, n in points]


def test_linear_scenario():
    est = estimate_completion(series_of([(0, 0), (1, 2), (2, 4)]))
    assert est.known
    assert est.projected_completion == pytest.approx(5.0)
    assert est.rate == pytest.approx(0.2)
    assert est.r_squared == pytest.approx(1.0)
    assert est.remaining(2.0) == pytest.approx(3.0)


@pytest.mark.parametrize("points", [[], [(0, 1)]])
def test_too_few_samples(points):
    est = estimate_completion(series_of(points))
    assert not est.known
    assert est.projected_completion is None
    assert est.remaining(0.0) is None


def test_min_samples_respected():
    data = series_of([(0, 0), (1, 1), (2, 2)])
    assert not estimate_completion(data, min_samples=4).known
    assert estimate_completion(data, min_samples=3).known


@pytest.mark.parametrize(
    "points",
    [
        [(0, 5), (1, 5), (2, 5)],  # stalled
        [(0, 9), (1, 7), (2, 5)],  # going backwards
        [(3, 1), (3, 2), (3, 3)],  # no elapsed time
    ],
)
def test_no_forward_progress_is_unknown(points):
    est = estimate_completion(series_of(points))
    assert not est.known
    assert est.reason


def test_idempotent():
    data = series_of([(0, 1), (2, 2), (3, 2), (5, 4), (6, 5)], denominator=20)
    assert estimate_completion(data) == estimate_completion(data)


def test_monotonic_input_converges():
    """Remaining time stays positive and shrinks as progress approaches 1.0"""
    data = [Sample(float(t), t, 20) for t in range(20)]
    previous = None
    for k in range(2, 20):
        window = data[:k]
        est = estimate_completion(window)
        remaining = est.remaining(window[-1].timestamp)
        assert remaining > 0
        if previous is not None:
            assert remaining < previous
        previous = remaining


def test_single_regression_does_not_destabilize():
    clean = [Sample(float(t), 5 * t, 100) for t in range(12)]
    noisy = list(clean)
    # A retried sub-task drops progress back sharply for one sample
    noisy[8] = Sample(8.0, 5, 100)
    expected = estimate_completion(clean).projected_completion
    est = estimate_completion(noisy)
    assert est.known
    assert expected == pytest.approx(20.0)
    assert est.projected_completion == pytest.approx(expected, rel=0.05)


def test_large_timestamps():
    base = 1e9
    data = [Sample(base + t, t, 10) for t in range(5)]
    est = estimate_completion(data)
    assert est.projected_completion - base == pytest.approx(10.0)


def test_estimator_uses_recent_window():
    series = TimeSeries(100)
    # Slow for a long time, then fast
    for t in range(50):
        series.append(Sample(float(t), t, 1000))
    for t in range(50, 60):
        series.append(Sample(float(t), 50 + (t - 49) * 10, 1000))
    recent = Estimator(window=9).estimate(series)
    overall = Estimator(window=None).estimate(series)
    assert recent.rate == pytest.approx(0.01)
    assert overall.rate < recent.rate
    assert recent.samples == 10


def test_estimator_caps_sample_count():
    series = TimeSeries(500)
    for t in range(500):
        series.append(Sample(float(t), t, 1000))
    est = Estimator(window=None, max_samples=50).estimate(series)
    assert est.samples == 50
    assert est.projected_completion == pytest.approx(1000.0)


def test_unknown_constructor():
    est = Estimate.unknown("not enough samples", 1)
    assert not est.known
    assert est.samples == 1
