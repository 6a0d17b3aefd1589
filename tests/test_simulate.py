import numpy as np
import pytest

from sprfit.exceptions import ConfigError, SimulationCancelled, SimulationError
from sprfit.outputters import TotalAOutputter, TotalBoundOutputter
from sprfit.params import ReactionRates, make_run_config
from sprfit.simulate import BOUND, CROSSLINKED, SimulationState, simulate_once, run_spr_sim


@pytest.fixture
def rates():
    return ReactionRates(kon=0.2, koff=0.05, konb=0.5, reach=30.0)


def test_counts_are_conserved(rates, small_config):
    counts = simulate_once(rates, small_config, np.random.default_rng(0))
    assert counts.shape == (small_config.tsave.size, 3)
    assert np.all(counts.sum(axis=1) == small_config.N)
    assert np.all(counts >= 0)
    # everything starts Free
    assert counts[0].tolist() == [small_config.N, 0, 0]
    # crosslinks always pair two sites
    assert np.all(counts[:, 2] % 2 == 0)


def test_crosslinking_happens_with_large_reach(small_config):
    rates = ReactionRates(kon=1.0, koff=0.01, konb=10.0, reach=small_config.L)
    counts = simulate_once(rates, small_config, np.random.default_rng(1))
    assert counts[-1, 2] > 0


def test_zero_reach_never_crosslinks(small_config):
    rates = ReactionRates(kon=1.0, koff=0.1, konb=100.0, reach=0.0)
    counts = simulate_once(rates, small_config, np.random.default_rng(2))
    assert np.all(counts[:, 2] == 0)


def test_same_seed_same_trajectory(rates, small_config):
    a = simulate_once(rates, small_config, np.random.default_rng(5))
    b = simulate_once(rates, small_config, np.random.default_rng(5))
    np.testing.assert_array_equal(a, b)


def test_single_repeat_ensemble_is_that_run(rates):
    cfg = make_run_config(N=30, tstop=10.0, dt=1.0, nsims=1, seed=3, resample_initlocs=False)
    child = np.random.SeedSequence(7).spawn(1)[0]
    counts = simulate_once(rates, cfg, np.random.default_rng(child))

    out = run_spr_sim(TotalBoundOutputter(cfg.tsave), rates, cfg, seed=7)
    np.testing.assert_array_equal(out.means(), counts[:, 1] + counts[:, 2])
    np.testing.assert_array_equal(out.variances(), 0.0)


def test_ensemble_is_reproducible(rates, small_config):
    a = run_spr_sim(TotalBoundOutputter(small_config.tsave), rates, small_config, seed=9)
    b = run_spr_sim(TotalBoundOutputter(small_config.tsave), rates, small_config, seed=9)
    np.testing.assert_array_equal(a.means(), b.means())
    assert a.nobs == small_config.nsims


def test_ensemble_uses_config_seed_by_default(rates):
    cfg = make_run_config(N=20, tstop=10.0, dt=2.0, nsims=2, seed=21)
    a = run_spr_sim(TotalBoundOutputter(cfg.tsave), rates, cfg)
    b = run_spr_sim(TotalBoundOutputter(cfg.tsave), rates, cfg, seed=21)
    np.testing.assert_array_equal(a.means(), b.means())


def test_parallel_matches_serial(rates, small_config):
    a = run_spr_sim(TotalBoundOutputter(small_config.tsave), rates, small_config, seed=4, workers=1)
    b = run_spr_sim(TotalBoundOutputter(small_config.tsave), rates, small_config, seed=4, workers=2)
    np.testing.assert_array_equal(a.means(), b.means())
    np.testing.assert_allclose(a.variances(), b.variances())


def test_outputter_accumulates_between_calls(rates, small_config):
    out = TotalBoundOutputter(small_config.tsave)
    run_spr_sim(out, rates, small_config, seed=1)
    run_spr_sim(out, rates, small_config, seed=2)
    assert out.nobs == 2 * small_config.nsims


def test_association_switch_off():
    cfg = make_run_config(N=50, tstop=40.0, dt=1.0, tstop_AtoB=10.0, nsims=1, seed=0)
    rates = ReactionRates(kon=0.5, koff=0.2, konb=1.0, reach=0.0)
    counts = simulate_once(rates, cfg, np.random.default_rng(8))
    free = counts[:, 0]
    after = cfg.tsave >= 10.0
    assert np.all(np.diff(free[after]) >= 0)
    assert counts[cfg.tsave <= 10.0, 1].max() > 0


def test_no_association_when_switched_off_at_start():
    cfg = make_run_config(N=10, tstop=5.0, dt=1.0, tstop_AtoB=0.0, nsims=1, seed=0)
    rates = ReactionRates(kon=10.0, koff=1.0, konb=1.0, reach=5.0)
    counts = simulate_once(rates, cfg, np.random.default_rng(0))
    assert np.all(counts[:, 0] == 10)


def test_irreversible_binding_saturates():
    cfg = make_run_config(N=25, tstop=50.0, dt=5.0, nsims=1, seed=0)
    rates = ReactionRates(kon=1.0, koff=1e-12, konb=1e-12, reach=0.0)
    counts = simulate_once(rates, cfg, np.random.default_rng(0))
    assert np.all(np.diff(counts[:, 1]) >= 0)
    assert counts[-1, 1] == 25


def test_diffusing_sites(rates):
    cfg = make_run_config(N=30, tstop=10.0, dt=1.0, nsims=2, seed=0, diffusivity=5.0)
    out = run_spr_sim(TotalAOutputter(cfg.tsave), rates, cfg, seed=0)
    assert out.means()[0] == 30
    assert np.all(out.means() <= 30)


def test_runaway_diffusion_raises():
    cfg = make_run_config(N=5, tstop=10.0, dt=1.0, nsims=1, seed=0, diffusivity=1e308)
    rates = ReactionRates(kon=1.0, koff=1.0, konb=1.0, reach=0.0)
    with pytest.raises(SimulationError):
        simulate_once(rates, cfg, np.random.default_rng(0))


def test_cancel_stops_run(rates, small_config):
    calls = []

    def cancel():
        calls.append(1)
        return len(calls) > 3

    with pytest.raises(SimulationCancelled):
        simulate_once(rates, small_config, np.random.default_rng(0), cancel=cancel)


def test_mismatched_outputter_rejected(rates, small_config):
    with pytest.raises(ConfigError):
        run_spr_sim(TotalBoundOutputter([0.0, 1.0]), rates, small_config)


def test_resampled_positions_differ_between_repeats(rates):
    cfg = make_run_config(N=30, tstop=10.0, dt=1.0, nsims=4, seed=0, resample_initlocs=True)
    out = run_spr_sim(TotalBoundOutputter(cfg.tsave), rates, cfg, seed=0)
    assert out.nobs == 4


def _pair_state(diffusivity, konb=100.0, koff=1e-6):
    cfg = make_run_config(N=2, L=1000.0, initlocs=[[0.0, 0.0, 0.0], [0.5, 0.0, 0.0]], tstop=10.0,
                          nsims=1, seed=0, diffusivity=diffusivity)
    rates = ReactionRates(kon=1.0, koff=koff, konb=konb, reach=1.0)
    state = SimulationState(rates, cfg, np.random.default_rng(0), cfg.initlocs)
    state._set_species(0, BOUND)
    state.reschedule(0)
    return state


def test_bound_site_rescheduled_when_neighbour_diffuses_away():
    state = _pair_state(diffusivity=1e6)
    assert state.sched_rate[0] == pytest.approx(100.0 + 1e-6)
    key_before = state.heap.key(0)

    # site 1 binds and jumps far out of reach in the same event
    state.fire(1, 1.0)
    assert state.species[1] == BOUND
    assert state.rate(0) == pytest.approx(1e-6)
    assert state.sched_rate[0] == pytest.approx(1e-6)
    assert state.heap.key(0) != key_before


def test_stale_clock_is_a_null_event():
    state = _pair_state(diffusivity=1e-12)
    # neighbour changes without the Bound site being told
    state._set_species(1, BOUND)
    state.fire(0, 0.5)
    assert state.species[0] == BOUND
    assert state.counts.tolist() == [0, 2, 0]
    assert state.sched_rate[0] == pytest.approx(1e-6)


def test_diffusion_moves_the_firing_site_only():
    cfg = make_run_config(N=5, tstop=10.0, nsims=1, seed=0, diffusivity=5.0)
    rates = ReactionRates(kon=1.0, koff=1.0, konb=1.0, reach=0.0)
    state = SimulationState(rates, cfg, np.random.default_rng(0), cfg.initlocs)
    before = state.pos.copy()
    state.fire(2, 1.0)
    assert not np.allclose(state.pos[2], before[2])
    np.testing.assert_array_equal(np.delete(state.pos, 2, axis=0), np.delete(before, 2, axis=0))
    assert state.tlast[2] == 1.0
    assert np.all((state.pos >= 0) & (state.pos < cfg.L))


def test_pinned_sites_do_not_move():
    cfg = make_run_config(N=5, tstop=10.0, nsims=1, seed=0, diffusivity=0.0)
    rates = ReactionRates(kon=1.0, koff=1.0, konb=1.0, reach=2.0)
    state = SimulationState(rates, cfg, np.random.default_rng(0), cfg.initlocs)
    before = state.pos.copy()
    state.fire(2, 1.0)
    np.testing.assert_array_equal(state.pos, before)


@pytest.mark.parametrize("diffusivity", [0.0, 5.0])
def test_clocks_track_neighbour_changes(diffusivity):
    cfg = make_run_config(N=30, tstop=50.0, nsims=1, seed=2, diffusivity=diffusivity)
    rates = ReactionRates(kon=0.5, koff=0.2, konb=2.0, reach=3.0)
    state = SimulationState(rates, cfg, np.random.default_rng(3), cfg.initlocs)

    n_events = 0
    while n_events < 600:
        t, i = state.heap.top()
        if t > cfg.tstop:
            break
        state.fire(i, t)
        n_events += 1

        np.testing.assert_array_equal(state.counts, np.bincount(state.species, minlength=3))
        for k in range(cfg.N):
            # every pending clock was drawn with the site's current rate
            assert state.sched_rate[k] == pytest.approx(state.rate(k))
            if state.species[k] == CROSSLINKED:
                p = state.partner[k]
                assert state.partner[p] == k
                assert state.species[p] == CROSSLINKED
            else:
                assert state.partner[k] == -1
    assert n_events > 50


class _FoldRecorder(TotalBoundOutputter):
    def __init__(self, tsave):
        super().__init__(tsave)
        self.folded = []

    def fold(self, counts):
        self.folded.append(np.array(counts, copy=True))
        super().fold(counts)


@pytest.mark.parametrize("workers", [1, 2])
def test_each_finished_run_is_folded_once(rates, small_config, workers):
    out = run_spr_sim(_FoldRecorder(small_config.tsave), rates, small_config, seed=4, workers=workers)
    assert len(out.folded) == small_config.nsims
    for counts in out.folded:
        assert counts.shape == (small_config.tsave.size, 3)
        np.testing.assert_array_equal(counts.sum(axis=1), small_config.N)
