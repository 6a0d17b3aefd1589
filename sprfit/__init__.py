"""
sprfit: stochastic avidity simulation, surrogate tables and global fitting of
surface-plasmon-resonance binding kinetics.
"""

__version__ = "0.1.0"

from sprfit.params import ReactionRates, RunConfig, make_run_config, biopars_from_fitting_vec
from sprfit.outputters import TotalBoundOutputter, TotalAOutputter
from sprfit.simulate import run_spr_sim
from sprfit.io import AlignedData
from sprfit.surrogate import SurrogateParams, Surrogate, build_surrogate, save_surrogate, load_surrogate
from sprfit.fitting import fit_spr_data, bboptpars_to_physpars

__all__ = [
    "ReactionRates", "RunConfig", "make_run_config", "biopars_from_fitting_vec",
    "TotalBoundOutputter", "TotalAOutputter", "run_spr_sim", "AlignedData",
    "SurrogateParams", "Surrogate", "build_surrogate", "save_surrogate", "load_surrogate",
    "fit_spr_data", "bboptpars_to_physpars",
]
