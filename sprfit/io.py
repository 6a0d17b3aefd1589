from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import json
import logging

import numpy as np
import pandas as pd

from sprfit.exceptions import ConfigError

logger = logging.getLogger(__name__)

PHYS_NAMES = ["kon", "koff", "konb", "reach", "CP"]
LOG_NAMES = ["logkon", "logkoff", "logkonb", "reach", "logCP"]


def _normcols(df):
    df = df.copy()
    df.columns = [c.strip().lower().replace(" ", "_") for c in df.columns]
    return df


def _find_col(df, cands):
    for c in cands:
        if c in df.columns:
            return c
    return None


@dataclass(frozen=True, eq=False)
class AlignedData:
    """
    Time-aligned SPR curves, one series per antibody concentration.

    The first concentration is the reference at which kon is fitted; the
    others are related to it through ``log10(c / c_ref)``.

    Attributes:
        times: per-series ascending time points.
        refdata: per-series responses matching ``times``.
        antibodyconcens: antibody concentration of each series.
        antigenconcen: antigen concentration of the experiment.
    """
    times: tuple
    refdata: tuple
    antibodyconcens: np.ndarray
    antigenconcen: float

    def __post_init__(self):
        times = tuple(np.asarray(t, dtype=np.float64) for t in self.times)
        refdata = tuple(np.asarray(r, dtype=np.float64) for r in self.refdata)
        abcs = np.asarray(self.antibodyconcens, dtype=np.float64)

        if not (len(times) == len(refdata) == abcs.size) or abcs.size == 0:
            raise ConfigError("times, refdata and antibodyconcens must have the same, non-zero length")
        if np.any(~np.isfinite(abcs)) or np.any(abcs <= 0):
            raise ConfigError("antibody concentrations must be positive")
        if not (np.isfinite(self.antigenconcen) and self.antigenconcen > 0):
            raise ConfigError(f"antigen concentration must be positive, got {self.antigenconcen}")
        for j, (t, r) in enumerate(zip(times, refdata)):
            if t.ndim != 1 or t.shape != r.shape:
                raise ConfigError(f"series {j}: times and responses must be matching 1-D arrays")
            if t.size > 1 and np.any(np.diff(t) <= 0):
                raise ConfigError(f"series {j}: times must be strictly ascending")

        object.__setattr__(self, "times", times)
        object.__setattr__(self, "refdata", refdata)
        object.__setattr__(self, "antibodyconcens", abcs)
        object.__setattr__(self, "antigenconcen", float(self.antigenconcen))

    def __len__(self):
        return self.antibodyconcens.size

    @property
    def n_points(self):
        return int(sum(t.size for t in self.times))

    def to_frame(self):
        rows = []
        for abc, t, r in zip(self.antibodyconcens, self.times, self.refdata):
            rows.append(pd.DataFrame({"concentration": abc, "time": t, "response": r}))
        return pd.concat(rows, ignore_index=True)


def load_aligned_csv(path, antigenconcen):
    """
    Load aligned SPR data from a long-format CSV.

    Expected columns (case-insensitive): ``concentration``, ``time`` and
    ``response`` (``ru`` is also accepted). Series are ordered by ascending
    concentration, so the lowest concentration is the reference.
    """
    df = _normcols(pd.read_csv(path))
    c_col = _find_col(df, ["concentration", "antibody_concentration", "conc"])
    t_col = _find_col(df, ["time", "t"])
    r_col = _find_col(df, ["response", "ru", "signal"])
    if c_col is None or t_col is None or r_col is None:
        raise ConfigError(f"{path}: need concentration, time and response columns, got {list(df.columns)}")

    for c in (c_col, t_col, r_col):
        df[c] = pd.to_numeric(df[c], errors="coerce")
    n0 = len(df)
    df = df.dropna(subset=[c_col, t_col, r_col])
    if len(df) < n0:
        logger.warning(f"[Data] dropped {n0 - len(df)} rows with non-numeric values from {path}")

    times, refdata, abcs = [], [], []
    for abc, sub in df.groupby(c_col, sort=True):
        sub = sub.sort_values(t_col)
        times.append(sub[t_col].to_numpy(dtype=float))
        refdata.append(sub[r_col].to_numpy(dtype=float))
        abcs.append(float(abc))

    logger.info(f"[Data] {len(abcs)} series, {len(df)} points from {path}")
    return AlignedData(tuple(times), tuple(refdata), np.asarray(abcs), antigenconcen)


def save_fit(output_dir, best, fitness, physpars, curves=None, prefix="fit"):
    """
    Write the best-fit parameters to ``<prefix>_params.json`` and, when given,
    the data/model curves to ``<prefix>_curves.csv``.

    Returns:
        dict of written paths
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    payload = {
        "internal": {k: float(v) for k, v in zip(LOG_NAMES, best)},
        "physical": {k: float(v) for k, v in zip(PHYS_NAMES, physpars)},
        "fitness": float(fitness),
    }
    paths = {"params": out / f"{prefix}_params.json"}
    with open(paths["params"], "w") as f:
        json.dump(payload, f, indent=2)

    if curves is not None:
        paths["curves"] = out / f"{prefix}_curves.csv"
        curves.to_csv(paths["curves"], index=False)

    logger.info(f"[Output] Saved fit to {out}")
    return paths
