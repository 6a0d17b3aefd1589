from dataclasses import dataclass

import numpy as np

from sprfit.io import AlignedData
from sprfit.surrogate import Surrogate


def scale_to_grid(value, vmin, size, width, offset=0.0):
    """
    Map a parameter value onto the grid-index axis of a surrogate:
    ``vmin -> offset`` and ``vmin + width -> offset + size - 1``.

    A zero-width axis maps every value onto its first index.
    """
    if width == 0:
        return offset + 0.0 * np.asarray(value, dtype=np.float64)
    return (value - vmin) / width * (size - 1) + offset


@dataclass(frozen=True, eq=False)
class ObjectiveContext:
    """Read-only inputs of the objective: the surrogate and the data to match."""
    surrogate: Surrogate
    aligned_data: AlignedData


def surrogate_sprdata_error(optpars, surrogate, aligned_data):
    """
    L2 error between the data and the surrogate curves at ``optpars``.

    ``optpars = [log10 kon_ref, log10 koff, log10 konb, reach, log10 CP]`` where
    kon_ref is the pseudo-first-order on-rate at the first (reference) antibody
    concentration. For every other series kon is shifted by
    ``log10(c / c_ref)`` before the lookup. Squared deviations are pooled over
    all time points of all series and the square root of the sum is returned.
    """
    sp = surrogate.surpars
    gs = sp.grid_size
    (kon_lo, _), (koff_lo, _), (konb_lo, _), (reach_lo, _) = sp.ranges
    dq1, dq2, dq3, dq4 = sp.widths

    q2 = scale_to_grid(optpars[1], koff_lo, gs[1], dq2)
    q3 = scale_to_grid(optpars[2], konb_lo, gs[2], dq3)
    q4 = scale_to_grid(optpars[3], reach_lo, gs[3], dq4)
    cp = 10.0 ** optpars[4]

    abcs = aligned_data.antibodyconcens
    refabc = abcs[0]
    err = 0.0
    for abc, times, sprdata in zip(abcs, aligned_data.times, aligned_data.refdata):
        # bimolecular correction of the on-rate
        logkon = optpars[0] + np.log10(abc / refabc)
        q1 = scale_to_grid(logkon, kon_lo, gs[0], dq1)

        pts = np.empty((times.size, 5), dtype=np.float64)
        pts[:, 0] = q1
        pts[:, 1] = q2
        pts[:, 2] = q3
        pts[:, 3] = q4
        pts[:, 4] = times
        diff = cp * surrogate.evaluate(pts) - sprdata
        err += float(np.dot(diff, diff))

    return float(np.sqrt(err))


def context_error(optpars, ctx):
    return surrogate_sprdata_error(optpars, ctx.surrogate, ctx.aligned_data)
