from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
import math
import tomllib


AVOGADRO = 6.02214076e23

# molecules per nm^3 in one micromolar solution
_MUM_PER_NM3 = 1e-6 * AVOGADRO / 1e24


def muM_to_inv_cubic_nm(c):
    """
    Convert a concentration in μM to a number density in (nm)^-3.
    """
    return c * _MUM_PER_NM3


def inv_cubic_nm_to_muM(c):
    """
    Convert a number density in (nm)^-3 to a concentration in μM.
    """
    return c / _MUM_PER_NM3


def format_duration(seconds):
    """
    Format a duration in seconds into a human-readable string.

    Args:
        seconds (float): Duration in seconds.
    Returns:
        str: Formatted duration string.
    """
    if seconds < 60:
        return f"{seconds:.2f} sec"
    elif seconds < 3600:
        return f"{seconds / 60:.2f} min"
    else:
        return f"{seconds / 3600:.2f} hr"


def project_root() -> Path:
    """
    Walk upwards from this file until a directory holding config.toml is found.

    Returns:
        The directory with config.toml, or the package directory when there is none.
    """
    start = Path(__file__).resolve().parent
    for p in [start, *start.parents]:
        if (p / "config.toml").is_file():
            return p
    return start


def _range_pair(name, v):
    if not (isinstance(v, (list, tuple)) and len(v) == 2):
        raise ValueError(f"surrogate.{name} must be a 2-element array [min, max], got: {v}")
    lo, hi = float(v[0]), float(v[1])
    if lo > hi:
        raise ValueError(f"surrogate.{name} invalid: min > max ({lo} > {hi})")
    return lo, hi


@dataclass(frozen=True)
class SPRFitConfig:
    # [simulation]
    n_particles: int = 1000
    tstop: float = 600.0
    tstop_AtoB: float = math.inf
    dt: float = 1.0
    dim: int = 3
    nsims: int = 1000
    resample_initlocs: bool = True
    diffusivity: float = 1.0
    antigenconcen: float = 500 / 149 / 26795 * 1e6
    # [surrogate]
    logkon_range: tuple[float, float] = (-3.0, 3.0)
    logkoff_range: tuple[float, float] = (-4.0, 0.0)
    logkonb_range: tuple[float, float] = (-3.0, 3.0)
    reach_range: tuple[float, float] = (0.0, 50.0)
    grid_size: tuple[int, int, int, int] = (5, 5, 5, 5)
    # [optimization]
    method: str = "cmaes"
    max_steps: int = 5000
    population_size: int = 50
    seed: int = 42
    # [general]
    results_dir: str | Path = "results"
    log_dir: str | Path = "logs"
    extra: dict = field(default_factory=dict)


def load_config_toml(path: str | Path | None = None) -> SPRFitConfig:
    """
    Parse a config.toml into an SPRFitConfig.

    Missing sections or keys keep their defaults. When ``path`` is None the
    project root is searched; without a config.toml the defaults are returned.
    """
    if path is None:
        path = project_root() / "config.toml"
        if not path.is_file():
            return SPRFitConfig()
    path = Path(path)

    with path.open("rb") as f:
        cfg = tomllib.load(f)

    sim = cfg.get("simulation", {})
    sur = cfg.get("surrogate", {})
    opt = cfg.get("optimization", {})
    gen = cfg.get("general", {})
    d = SPRFitConfig()

    grid_size = tuple(int(n) for n in sur.get("grid_size", d.grid_size))
    if len(grid_size) != 4 or min(grid_size) < 2:
        raise ValueError(f"surrogate.grid_size must hold four integers >= 2, got: {grid_size}")

    return SPRFitConfig(
        n_particles=int(sim.get("n_particles", d.n_particles)),
        tstop=float(sim.get("tstop", d.tstop)),
        tstop_AtoB=float(sim.get("tstop_AtoB", d.tstop_AtoB)),
        dt=float(sim.get("dt", d.dt)),
        dim=int(sim.get("dim", d.dim)),
        nsims=int(sim.get("nsims", d.nsims)),
        resample_initlocs=bool(sim.get("resample_initlocs", d.resample_initlocs)),
        diffusivity=float(sim.get("diffusivity", d.diffusivity)),
        antigenconcen=float(sim.get("antigen_concentration", d.antigenconcen)),
        logkon_range=_range_pair("logkon_range", sur.get("logkon_range", d.logkon_range)),
        logkoff_range=_range_pair("logkoff_range", sur.get("logkoff_range", d.logkoff_range)),
        logkonb_range=_range_pair("logkonb_range", sur.get("logkonb_range", d.logkonb_range)),
        reach_range=_range_pair("reach_range", sur.get("reach_range", d.reach_range)),
        grid_size=grid_size,
        method=str(opt.get("method", d.method)),
        max_steps=int(opt.get("max_steps", d.max_steps)),
        population_size=int(opt.get("population_size", d.population_size)),
        seed=int(opt.get("seed", d.seed)),
        results_dir=gen.get("output_directory", d.results_dir),
        log_dir=gen.get("log_directory", d.log_dir),
        extra={k: v for k, v in cfg.items()
               if k not in ("simulation", "surrogate", "optimization", "general")},
    )

