import numpy as np
import pytest

from sprfit.io import AlignedData
from sprfit.params import make_run_config
from sprfit.surrogate import Surrogate, SurrogateParams


@pytest.fixture
def small_config():
    return make_run_config(N=40, tstop=20.0, dt=2.0, nsims=3, seed=11, resample_initlocs=False)


@pytest.fixture
def sur_params():
    return SurrogateParams(
        logkon_range=(-3.0, 3.0),
        logkoff_range=(-4.0, 0.0),
        logkonb_range=(-3.0, 3.0),
        reach_range=(0.0, 50.0),
        grid_size=(5, 5, 5, 5),
    )


@pytest.fixture
def sur_times():
    return np.linspace(0.0, 600.0, 50)


def _basis(times):
    tn = times / 600.0
    return np.stack([
        1.5 - np.exp(-5.0 * tn),
        1.0 - np.exp(-2.0 * tn),
        tn,
        tn ** 2,
        np.sin(np.pi * tn),
    ])


@pytest.fixture
def analytic_surrogate(sur_params, sur_times):
    """
    Table linear in every grid index, y = f0(t) + sum_k i_k g_k(t), so the
    multilinear interpolant is exact between nodes as well.
    """
    basis = _basis(sur_times)
    idx = np.indices(sur_params.grid_size, dtype=float)
    table = basis[0] + sum(idx[k][..., None] * basis[k + 1] for k in range(4))
    return Surrogate(sur_params, sur_times, table)


@pytest.fixture
def true_pars():
    return np.array([0.3, -1.7, -0.9, 17.0, 0.1])


def make_aligned(surrogate, pars, concens, times, antigenconcen=125.23622683286348):
    """Synthetic data produced by the surrogate itself at ``pars``."""
    sp = surrogate.surpars
    refdata = []
    for abc in concens:
        logkon = pars[0] + np.log10(abc / concens[0])
        q = [
            (logkon - sp.logkon_range[0]) / (sp.logkon_range[1] - sp.logkon_range[0]) * (sp.grid_size[0] - 1),
            (pars[1] - sp.logkoff_range[0]) / (sp.logkoff_range[1] - sp.logkoff_range[0]) * (sp.grid_size[1] - 1),
            (pars[2] - sp.logkonb_range[0]) / (sp.logkonb_range[1] - sp.logkonb_range[0]) * (sp.grid_size[2] - 1),
            (pars[3] - sp.reach_range[0]) / (sp.reach_range[1] - sp.reach_range[0]) * (sp.grid_size[3] - 1),
        ]
        pts = np.column_stack([np.full(times.size, v) for v in q] + [times])
        refdata.append(10.0 ** pars[4] * surrogate.evaluate(pts))
    return AlignedData(tuple(times for _ in concens), tuple(refdata), np.asarray(concens, dtype=float),
                       antigenconcen)


@pytest.fixture
def aligned_single(analytic_surrogate, true_pars, sur_times):
    return make_aligned(analytic_surrogate, true_pars, [10.0], sur_times)


@pytest.fixture
def aligned_factory():
    return make_aligned
