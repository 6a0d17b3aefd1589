"""
Command-line entry point for sprfit.

Usage
--------------
# sweep the simulator and store a surrogate
sprfit build-surrogate --output results/surrogate.npz --nsims 200 --workers 8

# fit aligned SPR data (long-format CSV: concentration, time, response)
sprfit fit --surrogate results/surrogate.npz --data aligned.csv --antigen-concentration 62.618

# forward-simulate one parameter vector
sprfit simulate --logpars -1 --logpars -2 --logpars 0 --logpars 20 --logpars 0 --output results/curve.csv
"""
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
import typer

from sprfit.config import (N_PARTICLES, TSTOP, TSTOP_ATOB, DT, DIM, NSIMS, RESAMPLE_INITLOCS, DIFFUSIVITY,
                           SIM_ANTIGENCONCEN, LOGKON_RANGE, LOGKOFF_RANGE, LOGKONB_RANGE, REACH_RANGE,
                           GRID_SIZE, METHOD, MAX_STEPS, POPULATION_SIZE, SEED, RESULTS_DIR)
from sprfit.fitting import fit_spr_data, simulate_fit_curves, update_pars_and_run_spr_sim
from sprfit.io import load_aligned_csv, save_fit
from sprfit.logconf import setup_logger
from sprfit.outputters import TotalBoundOutputter
from sprfit.params import make_run_config
from sprfit.surrogate import SurrogateParams, build_surrogate, load_surrogate, save_surrogate

app = typer.Typer(help="Surrogate-based fitting of SPR avidity kinetics")


def _run_config(nsims, n_particles, tstop, dt, seed):
    return make_run_config(
        antigenconcen=SIM_ANTIGENCONCEN,
        N=n_particles,
        tstop=tstop,
        tstop_AtoB=TSTOP_ATOB,
        dt=dt,
        dim=DIM,
        resample_initlocs=RESAMPLE_INITLOCS,
        nsims=nsims,
        diffusivity=DIFFUSIVITY,
        seed=seed,
    )


@app.command("build-surrogate")
def build_surrogate_cmd(
        output: Path = typer.Option(Path(RESULTS_DIR) / "surrogate.npz", help="Surrogate archive to write."),
        nsims: int = typer.Option(NSIMS, help="Repeats per grid node."),
        n_particles: int = typer.Option(N_PARTICLES, help="Antigen sites per simulation."),
        tstop: float = typer.Option(TSTOP),
        dt: float = typer.Option(DT, help="Spacing of the stored time axis."),
        seed: int = typer.Option(SEED),
        workers: int = typer.Option(1, help="Processes evaluating grid nodes."),
):
    """
    Sweep the simulator over the configured grid and save the surrogate.
    """
    logger = setup_logger()
    config = _run_config(nsims, n_particles, tstop, dt, seed)
    surpars = SurrogateParams(
        logkon_range=LOGKON_RANGE,
        logkoff_range=LOGKOFF_RANGE,
        logkonb_range=LOGKONB_RANGE,
        reach_range=REACH_RANGE,
        grid_size=GRID_SIZE,
        antigenconcen=config.antigenconcen_muM,
    )
    logger.info(config.summary().replace("\n", " | "))
    surrogate = build_surrogate(surpars, config, seed=seed, workers=workers)
    save_surrogate(surrogate, output)


@app.command()
def fit(
        surrogate: Path = typer.Option(..., exists=True, help="Surrogate archive."),
        data: Path = typer.Option(..., exists=True, help="Aligned data CSV."),
        antigen_concentration: float = typer.Option(..., help="Experimental antigen concentration, μM."),
        logcp_min: float = typer.Option(-2.0),
        logcp_max: float = typer.Option(2.0),
        method: str = typer.Option(METHOD),
        max_steps: int = typer.Option(MAX_STEPS),
        pop_size: int = typer.Option(POPULATION_SIZE),
        seed: int = typer.Option(SEED),
        workers: int = typer.Option(1),
        max_time: Optional[float] = typer.Option(None, help="Wall-time budget in seconds."),
        simulate: bool = typer.Option(False, help="Re-run the simulator at the optimum for the curves."),
        nsims: int = typer.Option(NSIMS, help="Repeats for --simulate."),
        output_dir: Path = typer.Option(Path(RESULTS_DIR)),
):
    """
    Fit aligned SPR data with a stored surrogate.
    """
    logger = setup_logger()
    sur = load_surrogate(surrogate)
    aligned = load_aligned_csv(data, antigen_concentration)

    res = fit_spr_data(sur, aligned, [(logcp_min, logcp_max)], method=method, max_steps=max_steps,
                       pop_size=pop_size, seed=seed, workers=workers, max_time=max_time)
    if res.best is None:
        logger.error(f"[Fit] {method} found no solution; nothing written")
        raise typer.Exit(code=1)

    curves = None
    if simulate:
        config = _run_config(nsims, N_PARTICLES, TSTOP, DT, seed)
        curves = simulate_fit_curves(res.best, aligned, config, seed=seed, workers=workers)
    paths = save_fit(output_dir, res.best, res.fitness, res.physpars, curves)
    logger.info(f"[Done] {', '.join(str(p) for p in paths.values())}")


@app.command()
def simulate(
        logpars: List[float] = typer.Option(..., help="logkon logkoff logkonb reach logCP"),
        nsims: int = typer.Option(NSIMS),
        n_particles: int = typer.Option(N_PARTICLES),
        tstop: float = typer.Option(TSTOP),
        dt: float = typer.Option(DT),
        seed: int = typer.Option(SEED),
        workers: int = typer.Option(1),
        output: Path = typer.Option(Path(RESULTS_DIR) / "simulation.csv"),
):
    """
    Forward-simulate the mean bound-site curve at one parameter vector.
    """
    logger = setup_logger()
    if len(logpars) != 5:
        raise typer.BadParameter("--logpars needs five values")
    config = _run_config(nsims, n_particles, tstop, dt, seed)
    outputter = update_pars_and_run_spr_sim(TotalBoundOutputter(config.tsave), np.asarray(logpars), config,
                                            seed=seed, workers=workers)
    cp = 10.0 ** logpars[4]
    df = pd.DataFrame({"time": config.tsave, "bound": outputter.means(), "bound_std": outputter.stds(),
                       "response": cp * outputter.means()})
    output.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output, index=False)
    logger.info(f"[Done] Saved {len(df)} time points to {output}")


if __name__ == "__main__":
    app()
