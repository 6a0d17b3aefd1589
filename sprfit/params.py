from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
import math

import numpy as np

from sprfit.exceptions import ConfigError
from sprfit.utils import muM_to_inv_cubic_nm, inv_cubic_nm_to_muM

# Default internal antigen concentration of simulations and surrogates,
# 125.23622683286348 μM
DEFAULT_SIM_ANTIGENCONCEN = 500 / 149 / 26795 * 1000000

# Brownian diffusion coefficient of antigen sites, nm^2 per second
DEFAULT_DIFFUSIVITY = 1.0


class Species(IntEnum):
    FREE = 0
    BOUND = 1
    CROSSLINKED = 2


def _require_positive(name, value):
    if not (math.isfinite(value) and value > 0):
        raise ConfigError(f"{name} must be positive and finite, got {value}")


@dataclass(frozen=True)
class ReactionRates:
    """
    Physical parameters of the antigen/antibody reaction network.

    Attributes:
        kon: Free -> Bound rate, per concentration per time.
        koff: Bound -> Free rate (one antibody arm releasing), per time.
        konb: Bound + Free neighbour -> Crosslinked rate, per time per neighbour.
        reach: maximum distance for crosslinking.
        CP: calibration factor from bound sites to response units.
        antigenconcen: concentration of antigen.
        antibodyconcen: concentration of antibody, consistent with kon's units.
    """
    kon: float
    koff: float
    konb: float
    reach: float
    CP: float = 1.0
    antigenconcen: float = 1.0
    antibodyconcen: float = 1.0

    def __post_init__(self):
        for name in ("kon", "koff", "konb", "CP", "antigenconcen", "antibodyconcen"):
            _require_positive(name, getattr(self, name))
        # reach == 0 switches crosslinking off
        if not (math.isfinite(self.reach) and self.reach >= 0):
            raise ConfigError(f"reach must be non-negative and finite, got {self.reach}")

    @property
    def kon_eff(self):
        """Pseudo-first-order Free -> Bound rate."""
        return self.kon * self.antibodyconcen

    def summary(self):
        return "\n".join([
            "ReactionRates",
            f"kon = {self.kon}",
            f"koff = {self.koff}",
            f"konb = {self.konb}",
            f"reach = {self.reach}",
            f"CP = {self.CP}",
            f"[antigen] = {self.antigenconcen}",
            f"[antibody] = {self.antibodyconcen}",
        ])


def biopars_from_fitting_vec(p, antibodyconcen=1.0, antigenconcen=1.0):
    """
    Build ReactionRates from a fitting vector
    ``p = [log10(kon), log10(koff), log10(konb), reach, log10(CP)]``.
    """
    return ReactionRates(
        kon=10.0 ** p[0],
        koff=10.0 ** p[1],
        konb=10.0 ** p[2],
        reach=float(p[3]),
        CP=10.0 ** p[4],
        antigenconcen=antigenconcen,
        antibodyconcen=antibodyconcen,
    )


@dataclass(frozen=True, eq=False)
class RunConfig:
    """
    Settings of one ensemble of simulations. Build through make_run_config,
    which derives the domain length from the antigen density.

    Attributes:
        N: number of particles (antigen sites).
        tstop: time to end each simulation at.
        tstop_AtoB: time at which the Free -> Bound reaction is switched off.
        tsave: strictly ascending observation times within [0, tstop].
        L: side length of the periodic box.
        initlocs: (N, dim) initial positions in [0, L), reused unless resampled.
        resample_initlocs: draw fresh uniform positions for every repeat.
        nsims: number of repeats averaged by the outputter.
        dim: spatial dimension.
        diffusivity: Brownian diffusion coefficient; 0 pins every site in place.
    """
    N: int
    tstop: float
    tstop_AtoB: float
    tsave: np.ndarray
    L: float
    initlocs: np.ndarray
    resample_initlocs: bool = True
    nsims: int = 1000
    dim: int = 3
    diffusivity: float = DEFAULT_DIFFUSIVITY
    seed: int | None = None

    def __post_init__(self):
        if int(self.N) != self.N or self.N <= 0:
            raise ConfigError(f"N must be a positive integer, got {self.N}")
        if int(self.nsims) != self.nsims or self.nsims <= 0:
            raise ConfigError(f"nsims must be a positive integer, got {self.nsims}")
        if int(self.dim) != self.dim or self.dim <= 0:
            raise ConfigError(f"dim must be a positive integer, got {self.dim}")
        _require_positive("tstop", self.tstop)
        _require_positive("L", self.L)
        if math.isnan(self.tstop_AtoB) or self.tstop_AtoB < 0:
            raise ConfigError(f"tstop_AtoB must be non-negative, got {self.tstop_AtoB}")
        if not (math.isfinite(self.diffusivity) and self.diffusivity >= 0):
            raise ConfigError(f"diffusivity must be non-negative and finite, got {self.diffusivity}")

        tsave = np.asarray(self.tsave, dtype=np.float64)
        if tsave.ndim != 1 or tsave.size == 0:
            raise ConfigError("tsave must be a non-empty one-dimensional sequence")
        if not np.all(np.isfinite(tsave)):
            raise ConfigError("tsave must be finite")
        if tsave.size > 1 and np.any(np.diff(tsave) <= 0):
            raise ConfigError("tsave must be strictly ascending")
        if tsave[0] < 0 or tsave[-1] > self.tstop:
            raise ConfigError(f"tsave must lie within [0, tstop={self.tstop}]")
        object.__setattr__(self, "tsave", tsave)

        initlocs = np.asarray(self.initlocs, dtype=np.float64)
        if initlocs.shape != (self.N, self.dim):
            raise ConfigError(f"initlocs must have shape ({self.N}, {self.dim}), got {initlocs.shape}")
        if not np.all(np.isfinite(initlocs)):
            raise ConfigError("initlocs must be finite")
        object.__setattr__(self, "initlocs", np.mod(initlocs, self.L))

    @property
    def antigenconcen(self):
        """Number density of particles in (length)^-dim."""
        return self.N / self.L ** self.dim

    @property
    def antigenconcen_muM(self):
        return inv_cubic_nm_to_muM(self.antigenconcen)

    def with_times(self, tsave, tstop=None):
        """Copy of this config observing at ``tsave`` and ending at ``tstop`` (default: last time)."""
        tsave = np.asarray(tsave, dtype=np.float64)
        return RunConfig(
            N=self.N,
            tstop=float(tsave[-1]) if tstop is None else tstop,
            tstop_AtoB=self.tstop_AtoB,
            tsave=tsave,
            L=self.L,
            initlocs=self.initlocs,
            resample_initlocs=self.resample_initlocs,
            nsims=self.nsims,
            dim=self.dim,
            diffusivity=self.diffusivity,
            seed=self.seed,
        )

    def summary(self):
        return "\n".join([
            "RunConfig",
            f"number of particles (N) = {self.N}",
            f"tstop = {self.tstop}",
            f"tstop_AtoB = {self.tstop_AtoB}",
            f"number of save points = {self.tsave.size}",
            f"domain length (L) = {self.L}",
            f"dim = {self.dim}",
            f"diffusivity = {self.diffusivity}",
            f"resample_initlocs = {self.resample_initlocs}",
            f"nsims = {self.nsims}",
        ])


def make_run_config(antigenconcen=DEFAULT_SIM_ANTIGENCONCEN,
                    N=1000,
                    tstop=600.0,
                    tstop_AtoB=math.inf,
                    dt=1.0,
                    tsave=None,
                    L=None,
                    dim=3,
                    initlocs=None,
                    resample_initlocs=True,
                    nsims=1000,
                    diffusivity=DEFAULT_DIFFUSIVITY,
                    convert_agc_units=True,
                    seed=None):
    """
    Build a RunConfig, deriving whatever is not given explicitly.

    Args:
        antigenconcen: antigen concentration, μM unless ``convert_agc_units`` is False
            in which case it is already a number density in (nm)^-3.
        N: number of particles.
        tstop: end time of each run.
        tstop_AtoB: time to switch off Free -> Bound.
        dt: spacing of the default observation times ``0, dt, ..., tstop``.
        tsave: explicit observation times.
        L: explicit domain length; by default ``(N / agc)^(1/dim)``.
        dim: spatial dimension.
        initlocs: explicit initial positions, otherwise uniform in the box.
        resample_initlocs: resample initial positions every repeat.
        nsims: number of repeats.
        diffusivity: Brownian diffusion coefficient in nm^2 per unit time.
        convert_agc_units: convert ``antigenconcen`` from μM to (nm)^-3.
        seed: seed for the initial positions and the default ensemble seed.

    Returns:
        RunConfig
    """
    _require_positive("antigenconcen", antigenconcen)
    _require_positive("tstop", tstop)
    if int(N) != N or N <= 0:
        raise ConfigError(f"N must be a positive integer, got {N}")
    if int(dim) != dim or dim <= 0:
        raise ConfigError(f"dim must be a positive integer, got {dim}")

    agc = muM_to_inv_cubic_nm(antigenconcen) if convert_agc_units else antigenconcen
    Lv = (N / agc) ** (1.0 / dim) if L is None else float(L)
    _require_positive("L", Lv)

    if initlocs is None:
        rng = np.random.default_rng(seed)
        initlocs = Lv * rng.random((int(N), int(dim)))

    if tsave is None:
        _require_positive("dt", dt)
        n = int(math.floor(tstop / dt + 1e-9))
        tsave = dt * np.arange(n + 1, dtype=np.float64)

    return RunConfig(
        N=int(N),
        tstop=float(tstop),
        tstop_AtoB=float(tstop_AtoB),
        tsave=tsave,
        L=Lv,
        initlocs=initlocs,
        resample_initlocs=bool(resample_initlocs),
        nsims=int(nsims),
        dim=int(dim),
        diffusivity=float(diffusivity),
        seed=seed,
    )
