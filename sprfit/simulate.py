"""
Event-driven kinetic Monte Carlo of antigen sites on an SPR surface.

Each particle carries its own exponential clock whose rate is the sum of its
outgoing transitions:

* Free:        kon_eff (until ``tstop_AtoB``)                   -> Bound
* Bound:       koff                                             -> Free
               konb per Free neighbour within ``reach``         -> Crosslinked pair
* Crosslinked: koff (its arm releases; the partner reverts to Bound) -> Free

Pending clocks live in an :class:`~sprfit.heap.IndexedMinHeap` keyed by
particle handle. When a particle changes species, its own clock and the clocks
of Bound sites within reach of its old or new position (whose crosslinking
rate depends on it) are redrawn.

With diffusion a Bound site's free neighbourhood also drifts between its
events. Each clock remembers the rate it was drawn with and a Bound event is
thinned against the rate at firing time; a rejected event only redraws the
clock.
"""
import logging
import math
import multiprocessing as mp

import numpy as np

from sprfit.exceptions import ConfigError, SimulationCancelled, SimulationError
from sprfit.heap import IndexedMinHeap
from sprfit.params import Species
from sprfit.spatial import neighbor_lists, neighbors_within

logger = logging.getLogger(__name__)

FREE = int(Species.FREE)
BOUND = int(Species.BOUND)
CROSSLINKED = int(Species.CROSSLINKED)


class SimulationState:
    """State of one realization. Owned by a single run and discarded after it."""

    def __init__(self, rates, config, rng, initlocs):
        self.rates = rates
        self.config = config
        self.rng = rng
        self.L = float(config.L)
        self.dim = int(config.dim)
        self.diffusivity = float(config.diffusivity)
        self.kon = rates.kon_eff
        self.koff = rates.koff
        self.konb = rates.konb
        self.reach = rates.reach

        n = int(config.N)
        self.t = 0.0
        self.kon_on = config.tstop_AtoB > 0.0
        self.pos = np.array(initlocs, dtype=np.float64, copy=True)
        self.tlast = np.zeros(n, dtype=np.float64)
        self.species = np.full(n, FREE, dtype=np.int8)
        self.partner = np.full(n, -1, dtype=np.int64)
        self.counts = np.array([n, 0, 0], dtype=np.int64)

        self.static = self.diffusivity == 0.0
        if self.static and self.reach > 0.0:
            self.indptr, self.indices = neighbor_lists(self.pos, self.reach, self.L)
        else:
            self.indptr = self.indices = None

        rate0 = self.kon if self.kon_on else 0.0
        # rate each pending clock was drawn with
        self.sched_rate = np.full(n, rate0, dtype=np.float64)
        self.heap = IndexedMinHeap([self._draw(rate0) for _ in range(n)])

    def neighbors(self, i):
        if self.reach <= 0.0:
            return np.empty(0, dtype=np.int64)
        if self.static:
            return self.indices[self.indptr[i]:self.indptr[i + 1]]
        return neighbors_within(self.pos, i, self.reach, self.L)

    def free_neighbors(self, i):
        nb = self.neighbors(i)
        return nb[self.species[nb] == FREE]

    def rate(self, i):
        s = self.species[i]
        if s == FREE:
            return self.kon if self.kon_on else 0.0
        if s == BOUND:
            return self.koff + self.konb * self.free_neighbors(i).size
        return self.koff

    def _draw(self, rate):
        if rate <= 0.0:
            return math.inf
        tnext = self.t + self.rng.exponential(1.0 / rate)
        if math.isnan(tnext):
            raise SimulationError(f"non-finite event time drawn at t={self.t} (rate={rate})")
        return tnext

    def reschedule(self, i):
        r = self.rate(i)
        self.sched_rate[i] = r
        self.heap.update(i, self._draw(r))

    def advance(self, i):
        """Diffuse particle ``i`` from its last update to the current time."""
        if self.static:
            return
        dt = self.t - self.tlast[i]
        if dt > 0.0:
            step = math.sqrt(2.0 * self.diffusivity * dt)
            x = self.pos[i] + step * self.rng.standard_normal(self.dim)
            if not np.all(np.isfinite(x)):
                raise SimulationError(f"non-finite position for particle {i} at t={self.t}")
            self.pos[i] = np.mod(x, self.L)
        self.tlast[i] = self.t

    def _set_species(self, i, s):
        self.counts[self.species[i]] -= 1
        self.counts[s] += 1
        self.species[i] = s

    def _move(self, i, near):
        """Advance particle ``i``, first adding its neighbours at the old position to ``near``."""
        if not self.static:
            near.update(int(j) for j in self.neighbors(i))
        self.advance(i)

    def fire(self, i, t):
        """Apply the next reaction of particle ``i`` at time ``t``."""
        if not math.isfinite(t):
            raise SimulationError(f"non-finite event time {t} for particle {i}")
        self.t = t
        near = set()
        self._move(i, near)
        s = self.species[i]

        if s == FREE:
            self._set_species(i, BOUND)
            changed = (i,)
        elif s == BOUND:
            free_nb = self.free_neighbors(i)
            current = self.koff + self.konb * free_nb.size
            u = self.rng.random() * max(self.sched_rate[i], current)
            if u >= current:
                # the neighbourhood thinned out since the clock was drawn
                self.reschedule(i)
                return
            if free_nb.size == 0 or u < self.koff:
                self._set_species(i, FREE)
                changed = (i,)
            else:
                j = int(free_nb[self.rng.integers(free_nb.size)])
                self._move(j, near)
                self._set_species(i, CROSSLINKED)
                self._set_species(j, CROSSLINKED)
                self.partner[i] = j
                self.partner[j] = i
                changed = (i, j)
        else:
            p = int(self.partner[i])
            self._move(p, near)
            self._set_species(i, FREE)
            self._set_species(p, BOUND)
            self.partner[i] = -1
            self.partner[p] = -1
            changed = (i, p)

        for c in changed:
            near.update(int(j) for j in self.neighbors(c))
        touched = set(changed)
        touched.update(j for j in near if self.species[j] == BOUND)
        for j in touched:
            self.reschedule(j)

    def switch_off_kon(self, t):
        """Disable Free -> Bound from time ``t`` on."""
        self.t = t
        self.kon_on = False
        for i in np.flatnonzero(self.species == FREE):
            self.sched_rate[i] = 0.0
            self.heap.update(int(i), math.inf)


def simulate_once(rates, config, rng, initlocs=None, cancel=None):
    """
    Run one realization up to ``config.tstop``.

    Args:
        rates: ReactionRates
        config: RunConfig
        rng: numpy Generator owned by this run
        initlocs: initial positions, defaults to ``config.initlocs``
        cancel: optional callable polled between events; a true result stops the run

    Returns:
        int64 array of shape ``(len(config.tsave), 3)`` with the Free, Bound and
        Crosslinked counts at each observation time.
    """
    state = SimulationState(rates, config, rng, config.initlocs if initlocs is None else initlocs)
    tsave = config.tsave
    nsave = tsave.size
    out = np.empty((nsave, 3), dtype=np.int64)
    k = 0
    t_switch = config.tstop_AtoB if state.kon_on else math.inf

    while True:
        tnext, i = state.heap.top()
        horizon = min(tnext, t_switch)
        if math.isnan(horizon):
            raise SimulationError(f"non-finite event time after t={state.t}")
        while k < nsave and tsave[k] <= horizon:
            out[k] = state.counts
            k += 1
        if horizon > config.tstop:
            break
        if cancel is not None and cancel():
            raise SimulationCancelled(f"simulation cancelled at t={state.t}")
        if t_switch <= tnext:
            state.switch_off_kon(t_switch)
            t_switch = math.inf
            continue
        state.fire(i, tnext)

    while k < nsave:
        out[k] = state.counts
        k += 1
    return out


def _run_repeat(rates, config, seq, cancel=None):
    rng = np.random.default_rng(seq)
    if config.resample_initlocs:
        initlocs = config.L * rng.random((config.N, config.dim))
    else:
        initlocs = config.initlocs
    return simulate_once(rates, config, rng, initlocs, cancel=cancel)


def _repeat_job(args):
    return _run_repeat(*args)


def run_spr_sim(outputter, rates, config, seed=None, workers=1, cancel=None):
    """
    Run ``config.nsims`` independent realizations and fold each into ``outputter``.

    The outputter is not reset here, so repeated calls keep accumulating. Every
    repeat gets its own child of ``SeedSequence(seed)`` (``config.seed`` when
    ``seed`` is None), so results do not depend on ``workers``.

    Args:
        outputter: Outputter observing at ``config.tsave``
        rates: ReactionRates
        config: RunConfig
        seed: ensemble seed, an int or a SeedSequence
        workers: number of processes running repeats
        cancel: optional callable polled between events and between repeats

    Returns:
        outputter
    """
    if len(outputter) != config.tsave.size or not np.array_equal(outputter.tsave, config.tsave):
        raise ConfigError("outputter observation times do not match config.tsave")

    if isinstance(seed, np.random.SeedSequence):
        seq = seed
    else:
        seq = np.random.SeedSequence(config.seed if seed is None else seed)
    children = seq.spawn(config.nsims)
    logger.debug(f"[Sim] {config.nsims} repeats, N={config.N}, kon={rates.kon_eff:.4g}, "
                 f"koff={rates.koff:.4g}, konb={rates.konb:.4g}, reach={rates.reach:.4g}")

    if workers > 1 and config.nsims > 1:
        with mp.Pool(workers) as pool:
            for counts in pool.imap(_repeat_job, ((rates, config, c) for c in children)):
                # folding is the only step touching shared statistics
                outputter.fold(counts)
                if cancel is not None and cancel():
                    pool.terminate()
                    raise SimulationCancelled("ensemble cancelled between repeats")
        return outputter

    for c in children:
        outputter.fold(_run_repeat(rates, config, c, cancel=cancel))
    return outputter
