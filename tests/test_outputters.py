import numpy as np
import pytest

from sprfit.outputters import TotalAOutputter, TotalBoundOutputter


def _runs(n_runs, n_times, seed=0):
    rng = np.random.default_rng(seed)
    return [rng.integers(0, 50, size=(n_times, 3)) for _ in range(n_runs)]


def test_bound_outputter_matches_numpy():
    tsave = np.arange(6.0)
    runs = _runs(7, 6)
    out = TotalBoundOutputter(tsave)
    for r in runs:
        out.fold(r)
    vals = np.array([r[:, 1] + r[:, 2] for r in runs], dtype=float)
    np.testing.assert_allclose(out.means(), vals.mean(axis=0))
    np.testing.assert_allclose(out.variances(), vals.var(axis=0, ddof=1))
    np.testing.assert_allclose(out.stds(), vals.std(axis=0, ddof=1))
    assert out.nobs == 7


def test_free_outputter():
    out = TotalAOutputter([0.0, 1.0])
    out.fold(np.array([[10, 0, 0], [6, 2, 2]]))
    np.testing.assert_array_equal(out.means(), [10.0, 6.0])


def test_single_run_has_zero_variance():
    out = TotalBoundOutputter([0.0, 1.0, 2.0])
    out.fold(np.array([[5, 0, 0], [3, 1, 1], [1, 2, 2]]))
    np.testing.assert_array_equal(out.means(), [0.0, 2.0, 4.0])
    np.testing.assert_array_equal(out.variances(), 0.0)


def test_reset_clears_statistics():
    out = TotalBoundOutputter([0.0, 1.0])
    out.fold(np.array([[0, 1, 1], [0, 2, 2]]))
    out.reset()
    assert out.nobs == 0
    np.testing.assert_array_equal(out.means(), 0.0)


def test_value_at():
    out = TotalBoundOutputter([0.0, 1.5, 3.0])
    out.fold(np.array([[0, 1, 0], [0, 2, 0], [0, 3, 0]]))
    assert out.value_at(1.5) == 2.0
    with pytest.raises(KeyError):
        out.value_at(1.0)
    with pytest.raises(KeyError):
        out.value_at(4.0)


def test_wrong_length_rejected():
    out = TotalBoundOutputter([0.0, 1.0])
    with pytest.raises(ValueError):
        out.fold(np.zeros((3, 3)))


def test_observe_leaves_statistics_untouched():
    out = TotalBoundOutputter(np.arange(4.0))
    counts = np.array([[3, 1, 0], [2, 1, 1], [1, 1, 2], [0, 2, 2]])
    np.testing.assert_array_equal(out.observe(counts), [1, 2, 3, 4])
    assert out.nobs == 0
    np.testing.assert_array_equal(out.means(), 0.0)
