"""
Configurations for sprfit
"""
from sprfit.utils import load_config_toml

cfg = load_config_toml()

N_PARTICLES = cfg.n_particles
TSTOP = cfg.tstop
TSTOP_ATOB = cfg.tstop_AtoB
DT = cfg.dt
DIM = cfg.dim
NSIMS = cfg.nsims
RESAMPLE_INITLOCS = cfg.resample_initlocs
DIFFUSIVITY = cfg.diffusivity
SIM_ANTIGENCONCEN = cfg.antigenconcen

LOGKON_RANGE = cfg.logkon_range
LOGKOFF_RANGE = cfg.logkoff_range
LOGKONB_RANGE = cfg.logkonb_range
REACH_RANGE = cfg.reach_range
GRID_SIZE = cfg.grid_size

METHOD = cfg.method
MAX_STEPS = cfg.max_steps
POPULATION_SIZE = cfg.population_size
SEED = cfg.seed

RESULTS_DIR = cfg.results_dir
LOG_DIR = cfg.log_dir
