"""
Ensemble statistics for repeated simulations.

An outputter owns the observation times of an evaluation and one running
mean/variance per time (Welford's update). The simulator hands it the species
counts of one finished run through :meth:`Outputter.fold`, so only
O(#observation times) numbers are kept no matter how many repeats are run.

A run does not call the outputter at each observation time. It fills its own
``(n_times, 3)`` count buffer, and the ensemble driver folds that buffer in
one step once the run has finished. Repeats running in worker processes
therefore never touch the shared accumulators, and the fold is the single
point where they are updated. :meth:`Outputter.observe` maps that buffer to
the observed quantity, one row per observation time.
"""
import numpy as np

from sprfit.params import Species


class Outputter:
    """
    Base class; subclasses choose the observed quantity in :meth:`observe`.
    """

    def __init__(self, tsave):
        self.tsave = np.asarray(tsave, dtype=np.float64)
        self.reset()

    def reset(self):
        n = self.tsave.size
        self.nobs = 0
        self._mean = np.zeros(n, dtype=np.float64)
        self._m2 = np.zeros(n, dtype=np.float64)

    def __len__(self):
        return self.tsave.size

    def observe(self, counts):
        """
        Map per-species counts of one run, shape ``(n_times, 3)`` with columns
        ordered as :class:`Species`, to the observed value at each time.
        """
        raise NotImplementedError

    def fold(self, counts):
        """Fold one finished run into the running statistics."""
        x = np.asarray(self.observe(np.asarray(counts)), dtype=np.float64)
        if x.shape != self._mean.shape:
            raise ValueError(f"run produced {x.shape[0]} values for {self._mean.size} observation times")
        self.nobs += 1
        delta = x - self._mean
        self._mean += delta / self.nobs
        self._m2 += delta * (x - self._mean)

    def means(self):
        return self._mean.copy()

    def variances(self):
        """Unbiased sample variance, zero until two runs have been folded."""
        if self.nobs < 2:
            return np.zeros_like(self._mean)
        return self._m2 / (self.nobs - 1)

    def stds(self):
        return np.sqrt(self.variances())

    def value_at(self, t):
        """Mean at observation time ``t``; ``t`` must be one of the configured times."""
        i = int(np.searchsorted(self.tsave, t))
        if i >= self.tsave.size or self.tsave[i] != t:
            raise KeyError(f"{t} is not an observation time")
        return self._mean[i]


class TotalBoundOutputter(Outputter):
    """Number of occupied antigen sites, Bound plus Crosslinked."""

    def observe(self, counts):
        return counts[:, Species.BOUND] + counts[:, Species.CROSSLINKED]


class TotalAOutputter(Outputter):
    """Number of Free antigen sites."""

    def observe(self, counts):
        return counts[:, Species.FREE]
