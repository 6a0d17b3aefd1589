"""
Global fitting of surrogate curves to aligned SPR data.

The optimizer works on ``[log10 kon, log10 koff, log10 konb, reach, log10 CP]``
with kon the pseudo-first-order on-rate at the reference (first) antibody
concentration; :func:`bboptpars_to_physpars` turns the optimum into physical
units.
"""
from __future__ import annotations
from dataclasses import dataclass
import logging
import multiprocessing as mp
import signal
import threading
import time

import numpy as np
import pandas as pd
from pymoo.algorithms.soo.nonconvex.cmaes import CMAES
from pymoo.algorithms.soo.nonconvex.de import DE
from pymoo.algorithms.soo.nonconvex.es import ES
from pymoo.algorithms.soo.nonconvex.ga import GA
from pymoo.operators.sampling.lhs import LHS
from pymoo.termination import get_termination

try:
    from pymoo.parallelization.starmap import StarmapParallelization
except ImportError:
    # pymoo releases before the parallelization package
    from pymoo.core.problem import StarmapParallelization

from sprfit.config import MAX_STEPS, METHOD, POPULATION_SIZE, SEED
from sprfit.exceptions import ConfigError, RangeViolationError
from sprfit.lossfn import ObjectiveContext
from sprfit.optproblem import SurrogateFitProblem
from sprfit.outputters import TotalBoundOutputter
from sprfit.params import biopars_from_fitting_vec
from sprfit.simulate import run_spr_sim
from sprfit.utils import format_duration

logger = logging.getLogger(__name__)

RANGE_NAMES = ("logkon", "logkoff", "logkonb", "reach")


def check_range(rsur, ropt):
    return rsur[0] <= ropt[0] <= ropt[1] <= rsur[1]


def check_ranges(optranges, surpars):
    """
    Require the first four optimizer ranges to lie inside the surrogate box.

    Raises:
        RangeViolationError: a range reaches outside the stored grid.
    """
    for name, rsur, ropt in zip(RANGE_NAMES, surpars.ranges, optranges):
        if not check_range(rsur, ropt):
            raise RangeViolationError(
                f"Optimizer {name}_range {tuple(ropt)} not a subset of surrogate {name}_range {tuple(rsur)}"
            )


def resolve_searchrange(searchrange, surpars):
    """
    Expand ``searchrange`` into five (min, max) pairs.

    Either all five ranges ``[logkon, logkoff, logkonb, reach, logCP]`` are
    given, or only ``[logCP]``, in which case the surrogate's own ranges are
    used for the rest.
    """
    sr = [tuple(float(v) for v in r) for r in searchrange]
    if len(sr) == 1:
        sr = [tuple(r) for r in surpars.ranges] + sr
    if len(sr) != 5:
        raise ConfigError(f"searchrange needs 1 or 5 (min, max) pairs, got {len(sr)}")
    for r in sr:
        if len(r) != 2 or not r[0] <= r[1]:
            raise ConfigError(f"invalid search range {r}")
    check_ranges(sr[:4], surpars)
    return sr


def make_algorithm(method, n_var, x0, pop_size):
    method = method.lower()
    if method == "cmaes":
        return CMAES(x0=x0, sigma=0.3, restarts=2, incpopsize=2)
    if method == "de":
        return DE(
            pop_size=pop_size,
            sampling=LHS(),
            variant="DE/rand/1/bin",
            CR=0.7,
            dither="vector",
            jitter=False,
        )
    if method == "ga":
        return GA(pop_size=pop_size, eliminate_duplicates=True)
    if method == "es":
        return ES(n_offsprings=max(pop_size, 7 * n_var))
    raise ConfigError(f"unknown optimization method {method!r}; use cmaes, de, ga or es")


def _run_with_ctrlc(problem, algorithm, termination, seed, verbose=False, max_time=None):
    """
    Run a pymoo algorithm step by step so Ctrl+C or ``max_time`` (seconds)
    stops it between generations and the best-so-far is returned.
    """
    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, signal.default_int_handler)
    t0 = time.perf_counter()

    algorithm.setup(problem, termination=termination, seed=seed, verbose=verbose)

    interrupted = False
    try:
        while algorithm.has_next():
            algorithm.next()
            if max_time is not None and time.perf_counter() - t0 > max_time:
                interrupted = True
                logger.warning(f"[Fit] Time budget of {max_time} s reached. Finalizing best-so-far...")
                break
    except KeyboardInterrupt:
        interrupted = True
        logger.warning("[Fit] Optimization interrupted by user (Ctrl+C). Finalizing best-so-far...")

    res = algorithm.result()
    res.exec_time = time.perf_counter() - t0
    res.interrupted = interrupted
    res.n_evals = int(algorithm.evaluator.n_eval)
    return res


@dataclass
class FitResult:
    """
    Outcome of :func:`fit_spr_data`.

    Attributes:
        best: best internal vector ``[logkon, logkoff, logkonb, reach, logCP]``,
            None when the optimizer reported no solution (see ``raw``).
        fitness: L2 error at ``best``, None without a solution.
        physpars: ``[kon, koff, konb, reach, CP]`` in physical units, None without a solution.
        searchrange: the five ranges searched.
        n_evals: number of objective evaluations.
        exec_time: wall time in seconds.
        interrupted: stopped early by Ctrl+C or the time budget.
        raw: the pymoo result object.
    """
    best: np.ndarray | None
    fitness: float | None
    physpars: np.ndarray | None
    searchrange: list
    n_evals: int
    exec_time: float
    interrupted: bool = False
    raw: object = None


def fit_spr_data(surrogate, aligned_data, searchrange,
                 method=METHOD,
                 max_steps=MAX_STEPS,
                 pop_size=POPULATION_SIZE,
                 seed=SEED,
                 workers=1,
                 max_time=None,
                 verbose=False):
    """
    Find the parameters whose surrogate curves best match ``aligned_data``.

    Args:
        surrogate: Surrogate
        aligned_data: AlignedData
        searchrange: five ``(min, max)`` pairs for
            ``[logkon, logkoff, logkonb, reach, logCP]`` or a single logCP pair
        method: ``cmaes`` (default), ``de``, ``ga`` or ``es``
        max_steps: budget of objective evaluations
        pop_size: population size for population based methods
        seed: optimizer seed
        workers: processes evaluating the objective
        max_time: optional wall-time budget in seconds
        verbose: print pymoo progress

    Returns:
        FitResult
    """
    sr = resolve_searchrange(searchrange, surrogate.surpars)
    xl = np.array([r[0] for r in sr], dtype=float)
    xu = np.array([r[1] for r in sr], dtype=float)

    ctx = ObjectiveContext(surrogate, aligned_data)

    pool = None
    runner = None
    if workers > 1:
        pool = mp.Pool(workers)
        runner = StarmapParallelization(pool.starmap)
        logger.info(f"[Fit] Parallel evaluation enabled with {workers} workers.")

    try:
        problem = SurrogateFitProblem(ctx, xl, xu, elementwise_runner=runner)
        algorithm = make_algorithm(method, problem.n_var, 0.5 * (xl + xu), pop_size)
        termination = get_termination("n_eval", max_steps)

        logger.info(f"[Fit] {method}: {len(aligned_data)} series, {aligned_data.n_points} points, "
                    f"max_steps={max_steps}")
        res = _run_with_ctrlc(problem, algorithm, termination, seed, verbose=verbose, max_time=max_time)
    finally:
        if pool is not None:
            pool.close()
            pool.join()

    n_evals = res.n_evals
    if res.X is None:
        logger.warning(f"[Fit] {method} returned no solution after {n_evals} evaluations")
        return FitResult(best=None, fitness=None, physpars=None, searchrange=sr, n_evals=n_evals,
                         exec_time=res.exec_time, interrupted=res.interrupted, raw=res)

    best = np.asarray(res.X, dtype=float).reshape(-1)
    fitness = float(np.asarray(res.F, dtype=float).reshape(-1)[0])
    physpars = fit_to_physpars(best, aligned_data, surrogate)

    logger.info(f"[Fit] best error {fitness:.6g} after {n_evals} evaluations "
                f"({format_duration(res.exec_time)})")
    logger.info("[Fit] physical parameters: " +
                ", ".join(f"{k}={v:.6g}" for k, v in zip(["kon", "koff", "konb", "reach", "CP"], physpars)))

    return FitResult(best=best, fitness=fitness, physpars=physpars, searchrange=sr, n_evals=n_evals,
                     exec_time=res.exec_time, interrupted=res.interrupted, raw=res)


def bboptpars_to_physpars(bboptpars, antibodyconcen, antigenconcen, surrogate_antigenconcen):
    """
    Convert an optimizer vector to physical parameters ``[kon, koff, konb, reach, CP]``.

    kon is divided by the reference antibody concentration to make it
    bimolecular. The reach is converted from the simulator's antigen density
    to the experimental one,

        reach_e = reach_i * ([AGC]_i / [AGC]_e) ** (1/3),

    with both concentrations in the same units.
    """
    kon = (10.0 ** bboptpars[0]) / antibodyconcen
    koff = 10.0 ** bboptpars[1]
    konb = 10.0 ** bboptpars[2]
    reach = bboptpars[3] * np.cbrt(surrogate_antigenconcen / antigenconcen)
    CP = 10.0 ** bboptpars[4]
    return np.array([kon, koff, konb, reach, CP], dtype=float)


def physpars_to_bboptpars(physpars, antibodyconcen, antigenconcen, surrogate_antigenconcen):
    """Inverse of :func:`bboptpars_to_physpars`."""
    kon, koff, konb, reach, CP = physpars
    return np.array([
        np.log10(kon * antibodyconcen),
        np.log10(koff),
        np.log10(konb),
        reach / np.cbrt(surrogate_antigenconcen / antigenconcen),
        np.log10(CP),
    ], dtype=float)


def fit_to_physpars(bboptpars, aligned_data, surrogate):
    return bboptpars_to_physpars(bboptpars, aligned_data.antibodyconcens[0], aligned_data.antigenconcen,
                                 surrogate.surpars.antigenconcen)


def update_pars_and_run_spr_sim(outputter, logpars, config, seed=None, workers=1):
    """
    Reset ``outputter`` and run the forward simulator at fitting-vector parameters.

    Args:
        outputter: Outputter observing at ``config.tsave``
        logpars: ``[logkon, logkoff, logkonb, reach, logCP]``; kon already
            includes the antibody concentration
        config: RunConfig consistent with the surrogate
        seed: ensemble seed
        workers: processes running repeats

    Returns:
        outputter
    """
    biopars = biopars_from_fitting_vec(logpars, antibodyconcen=1.0, antigenconcen=config.antigenconcen_muM)
    outputter.reset()
    run_spr_sim(outputter, biopars, config, seed=seed, workers=workers)
    return outputter


def simulate_fit_curves(bboptpars, aligned_data, config, seed=None, workers=1):
    """
    Re-run the simulator at ``bboptpars`` for every series of ``aligned_data``.

    Each series is simulated at its own time points with kon shifted by
    ``log10(c / c_ref)``; the mean bound-site curve is scaled by CP.

    Returns:
        DataFrame with columns concentration, time, data, model, model_std.
    """
    params = np.asarray(bboptpars, dtype=float)
    abcref = aligned_data.antibodyconcens[0]
    cp = 10.0 ** params[4]
    frames = []
    for abc, times, data in zip(aligned_data.antibodyconcens, aligned_data.times, aligned_data.refdata):
        ps = params.copy()
        ps[0] = params[0] + np.log10(abc / abcref)
        cfg = config.with_times(times)
        outputter = update_pars_and_run_spr_sim(TotalBoundOutputter(times), ps, cfg, seed=seed, workers=workers)
        frames.append(pd.DataFrame({
            "concentration": abc,
            "time": times,
            "data": data,
            "model": cp * outputter.means(),
            "model_std": cp * outputter.stds(),
        }))
    return pd.concat(frames, ignore_index=True)
