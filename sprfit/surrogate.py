"""
Surrogate (look-up table) of the stochastic simulator.

The simulator is swept over a regular 4-D grid of (log10 kon, log10 koff,
log10 konb, reach); the mean bound-site curve of every node is stored in a
5-D table whose last axis is time, and a multilinear interpolant over the
table replaces the simulator during fitting.

Parameter axes are addressed in grid-index space (``0..n-1``), the time axis
by the observation times themselves.
"""
from __future__ import annotations
from dataclasses import dataclass
from itertools import product
from pathlib import Path
import logging
import math
import multiprocessing as mp
import os
import time
import zipfile

import numpy as np
from scipy.interpolate import RegularGridInterpolator
from tqdm import tqdm

from sprfit.exceptions import ConfigError, CorruptSurrogateError, SurrogateNotFoundError
from sprfit.outputters import TotalBoundOutputter
from sprfit.params import DEFAULT_SIM_ANTIGENCONCEN, ReactionRates
from sprfit.simulate import run_spr_sim
from sprfit.utils import format_duration

logger = logging.getLogger(__name__)

AXES = ("logkon_range", "logkoff_range", "logkonb_range", "reach_range")
FORMAT_VERSION = 1


@dataclass(frozen=True)
class SurrogateParams:
    """
    Parameter box and resolution of a surrogate.

    Attributes:
        logkon_range: (min, max) of log10 kon.
        logkoff_range: (min, max) of log10 koff.
        logkonb_range: (min, max) of log10 konb.
        reach_range: (min, max) of reach.
        grid_size: number of nodes along each of the four axes, each >= 2.
        antigenconcen: antigen concentration (μM) the simulations were run at.
    """
    logkon_range: tuple = (-3.0, 3.0)
    logkoff_range: tuple = (-4.0, 0.0)
    logkonb_range: tuple = (-3.0, 3.0)
    reach_range: tuple = (0.0, 50.0)
    grid_size: tuple = (5, 5, 5, 5)
    antigenconcen: float = DEFAULT_SIM_ANTIGENCONCEN

    def __post_init__(self):
        for name in AXES:
            r = getattr(self, name)
            if len(r) != 2:
                raise ConfigError(f"{name} must be a (min, max) pair, got {r}")
            lo, hi = float(r[0]), float(r[1])
            if not (math.isfinite(lo) and math.isfinite(hi)) or lo > hi:
                raise ConfigError(f"{name} must satisfy min <= max, got ({lo}, {hi})")
            object.__setattr__(self, name, (lo, hi))
        if self.reach_range[0] < 0:
            raise ConfigError(f"reach_range must be non-negative, got {self.reach_range}")

        gs = tuple(int(n) for n in self.grid_size)
        if len(gs) != 4 or min(gs) < 2:
            raise ConfigError(f"grid_size must hold four integers >= 2, got {self.grid_size}")
        object.__setattr__(self, "grid_size", gs)

        if not (math.isfinite(self.antigenconcen) and self.antigenconcen > 0):
            raise ConfigError(f"antigenconcen must be positive, got {self.antigenconcen}")
        object.__setattr__(self, "antigenconcen", float(self.antigenconcen))

    @property
    def ranges(self):
        return [getattr(self, name) for name in AXES]

    @property
    def widths(self):
        return [hi - lo for lo, hi in self.ranges]

    def axis_values(self):
        """Node coordinates along each parameter axis."""
        return [np.linspace(lo, hi, n) for (lo, hi), n in zip(self.ranges, self.grid_size)]


class Surrogate:
    """
    Response table plus the interpolant built over it.

    Args:
        surpars: SurrogateParams
        times: observation times, the coordinates of the last table axis
        table: array of shape ``(*surpars.grid_size, len(times))``
    """

    def __init__(self, surpars, times, table):
        times = np.asarray(times, dtype=np.float64)
        table = np.asarray(table, dtype=np.float64)
        if times.ndim != 1 or times.size < 2 or np.any(np.diff(times) <= 0):
            raise ConfigError("surrogate times must be strictly ascending with at least two entries")
        shape = tuple(surpars.grid_size) + (times.size,)
        if table.shape != shape:
            raise ConfigError(f"table shape {table.shape} does not match grid {shape}")

        self.surpars = surpars
        self.times = times
        self.table = table
        self.surrogate_size = shape
        grid = [np.arange(n, dtype=np.float64) for n in surpars.grid_size] + [times]
        self.itp = RegularGridInterpolator(grid, table, method="linear", bounds_error=True)
        self._lo = np.array([0.0] * 4 + [times[0]])
        self._hi = np.array([n - 1.0 for n in surpars.grid_size] + [times[-1]])

    def evaluate(self, points):
        """
        Interpolate at ``points`` of shape ``(..., 5)`` given as
        (grid index x4, time). Coordinates beyond the grid are clamped to its
        edge.
        """
        q = np.clip(np.asarray(points, dtype=np.float64), self._lo, self._hi)
        return self.itp(q)

    def __call__(self, q1, q2, q3, q4, t):
        return float(self.evaluate([q1, q2, q3, q4, t]))

    def __repr__(self):
        sp = self.surpars
        return (f"Surrogate(logkon={sp.logkon_range}, logkoff={sp.logkoff_range}, "
                f"logkonb={sp.logkonb_range}, reach={sp.reach_range}, size={self.surrogate_size}, "
                f"antigenconcen={sp.antigenconcen:.6g})")


def _node_rates(surpars, coords):
    logkon, logkoff, logkonb, reach = coords
    # antibody concentration is folded into kon
    return ReactionRates(
        kon=10.0 ** logkon,
        koff=10.0 ** logkoff,
        konb=10.0 ** logkonb,
        reach=float(reach),
        CP=1.0,
        antigenconcen=surpars.antigenconcen,
        antibodyconcen=1.0,
    )


def _node_job(args):
    surpars, config, seed, outputter_cls, flat, coords = args
    outputter = outputter_cls(config.tsave)
    node_seq = np.random.SeedSequence(seed, spawn_key=(flat,))
    run_spr_sim(outputter, _node_rates(surpars, coords), config, seed=node_seq)
    return flat, outputter.means()


def build_surrogate(surpars, config, seed=0, workers=1, outputter_cls=TotalBoundOutputter, progress=True):
    """
    Sweep the simulator over every grid node and build the surrogate.

    Each node draws its randomness from ``SeedSequence(seed, spawn_key=(node,))``,
    so the table does not depend on ``workers`` or on the order nodes finish in.

    Args:
        surpars: SurrogateParams
        config: RunConfig shared by all nodes; its antigen concentration must
            equal ``surpars.antigenconcen``
        seed: base seed
        workers: number of processes evaluating nodes
        outputter_cls: Outputter subclass to record
        progress: show a tqdm progress bar

    Returns:
        Surrogate
    """
    if not math.isclose(config.antigenconcen_muM, surpars.antigenconcen, rel_tol=1e-9):
        raise ConfigError(
            f"run config antigen concentration {config.antigenconcen_muM:.12g} μM does not match "
            f"surrogate antigen concentration {surpars.antigenconcen:.12g} μM"
        )

    axes = surpars.axis_values()
    shape = tuple(surpars.grid_size)
    n_nodes = int(np.prod(shape))
    table = np.empty(shape + (config.tsave.size,), dtype=np.float64)
    flat_table = table.reshape(n_nodes, config.tsave.size)

    jobs = (
        (surpars, config, seed, outputter_cls, flat, tuple(ax[i] for ax, i in zip(axes, idx)))
        for flat, idx in enumerate(product(*(range(n) for n in shape)))
    )

    logger.info(f"[Surrogate] Sweeping {n_nodes} nodes x {config.nsims} repeats, grid={shape}, "
                f"{config.tsave.size} times, workers={workers}")
    t0 = time.perf_counter()
    bar = tqdm(total=n_nodes, desc="surrogate", disable=not progress)
    if workers > 1:
        with mp.Pool(workers) as pool:
            for flat, means in pool.imap_unordered(_node_job, jobs):
                flat_table[flat] = means
                bar.update()
    else:
        for job in jobs:
            flat, means = _node_job(job)
            flat_table[flat] = means
            bar.update()
    bar.close()
    logger.info(f"[Surrogate] Done in {format_duration(time.perf_counter() - t0)}")

    return Surrogate(surpars, config.tsave, table)


def save_surrogate(surrogate, path):
    """
    Write the surrogate to a compressed ``.npz`` archive at ``path``.

    The archive is written to a temporary file first and moved into place;
    a failed write removes the temporary file and leaves ``path`` untouched.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    sp = surrogate.surpars
    tmp = path.with_name(path.name + ".tmp")
    try:
        with open(tmp, "wb") as f:
            np.savez_compressed(
                f,
                format_version=np.int64(FORMAT_VERSION),
                logkon_range=np.asarray(sp.logkon_range, dtype=np.float64),
                logkoff_range=np.asarray(sp.logkoff_range, dtype=np.float64),
                logkonb_range=np.asarray(sp.logkonb_range, dtype=np.float64),
                reach_range=np.asarray(sp.reach_range, dtype=np.float64),
                grid_size=np.asarray(surrogate.surrogate_size, dtype=np.int64),
                antigenconcen=np.float64(sp.antigenconcen),
                times=surrogate.times,
                table=surrogate.table.ravel(),
            )
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.info(f"[Surrogate] Saved {surrogate.surrogate_size} table to {path}")
    return path


def load_surrogate(path):
    """
    Read a surrogate written by :func:`save_surrogate` and rebuild its interpolant.

    Raises:
        SurrogateNotFoundError: no file at ``path``.
        CorruptSurrogateError: unreadable archive, missing fields or inconsistent sizes.
    """
    path = Path(path)
    if not path.is_file():
        raise SurrogateNotFoundError(f"no surrogate at {path}")

    try:
        with np.load(path, allow_pickle=False) as z:
            data = {k: z[k] for k in z.files}
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise CorruptSurrogateError(f"cannot read surrogate {path}: {e}") from e

    required = AXES + ("grid_size", "antigenconcen", "times", "table")
    missing = [k for k in required if k not in data]
    if missing:
        raise CorruptSurrogateError(f"surrogate {path} is missing {missing}")

    grid_size = data["grid_size"]
    if grid_size.shape != (5,):
        raise CorruptSurrogateError(f"surrogate {path}: grid_size must hold 5 integers, got {grid_size}")
    grid_size = tuple(int(n) for n in grid_size)
    table = data["table"]
    times = data["times"]
    if table.size != int(np.prod(grid_size)):
        raise CorruptSurrogateError(
            f"surrogate {path}: table has {table.size} values, grid {grid_size} needs {int(np.prod(grid_size))}"
        )
    if times.shape != (grid_size[4],):
        raise CorruptSurrogateError(f"surrogate {path}: {times.size} times for a time axis of {grid_size[4]}")

    try:
        surpars = SurrogateParams(
            logkon_range=tuple(data["logkon_range"]),
            logkoff_range=tuple(data["logkoff_range"]),
            logkonb_range=tuple(data["logkonb_range"]),
            reach_range=tuple(data["reach_range"]),
            grid_size=grid_size[:4],
            antigenconcen=float(data["antigenconcen"]),
        )
        surrogate = Surrogate(surpars, times, table.reshape(grid_size))
    except ConfigError as e:
        raise CorruptSurrogateError(f"surrogate {path}: {e}") from e

    logger.info(f"[Surrogate] Loaded {surrogate!r} from {path}")
    return surrogate
