import numpy as np
import pytest

from spm_fitting import DerivedQuantityDomainError, prager_statistics


def test_trajectory_touching_bmsy():
    B = np.concatenate([np.linspace(100.0, 500.0, 5), np.full(5, 500.0)])
    stats = prager_statistics(500.0, B, 1000.0)
    assert stats.nearness == 1.0
    assert stats.coverage == pytest.approx(min(2.0, (min(1000.0, 500.0) - 100.0) / 500.0))


def test_trajectory_lying_on_bmsy():
    single = prager_statistics(500.0, [500.0], 1000.0)
    assert single.nearness == 1.0
    assert single.coverage == 0.0
    flat = prager_statistics(500.0, np.full(4, 500.0), 1000.0)
    assert flat.nearness == 1.0


def test_trajectory_crossing_bmsy():
    stats = prager_statistics(500.0, [400.0, 600.0, 550.0], 1000.0)
    assert stats.nearness == 1.0
    assert stats.coverage == pytest.approx(0.4)


def test_trajectory_below_bmsy():
    stats = prager_statistics(500.0, [200.0, 250.0, 300.0], 1000.0)
    assert stats.nearness == pytest.approx(0.6)
    assert 0.0 <= stats.nearness < 1.0
    assert stats.coverage == pytest.approx(0.2)


def test_far_trajectory_nearness_is_clamped():
    stats = prager_statistics(500.0, [2000.0, 2100.0], 5000.0)
    assert stats.nearness == 0.0


def test_coverage_caps():
    assert prager_statistics(500.0, np.linspace(10.0, 2000.0, 20), 5000.0).coverage == 2.0
    capped_by_k = prager_statistics(500.0, np.linspace(100.0, 2000.0, 20), 1000.0)
    assert capped_by_k.coverage == pytest.approx(1.8)


def test_estimation_mask_excludes_forecast():
    B = [400.0, 450.0, 480.0, 700.0]
    mask = [True, True, True, False]
    stats = prager_statistics(500.0, B, 1000.0, estimation_mask=mask)
    assert stats.nearness == pytest.approx(1.0 - 20.0 / 500.0)
    assert stats.coverage == pytest.approx(80.0 / 500.0)

    assert prager_statistics(500.0, B, 1000.0).nearness == 1.0


@pytest.mark.parametrize(
    "bmsy, B, K, mask",
    [
        (500.0, [100.0, np.nan], 1000.0, None),
        (0.0, [100.0, 200.0], 1000.0, None),
        (float("nan"), [100.0, 200.0], 1000.0, None),
        (500.0, [100.0, 200.0], float("nan"), None),
        (500.0, [100.0, 200.0], 1000.0, [False, False]),
    ],
)
def test_undefined_inputs(bmsy, B, K, mask):
    with pytest.raises(DerivedQuantityDomainError):
        prager_statistics(bmsy, B, K, estimation_mask=mask)


def test_mask_shape_mismatch():
    with pytest.raises(ValueError):
        prager_statistics(500.0, [100.0, 200.0], 1000.0, estimation_mask=[True])
