import numpy as np
from numba import njit


@njit(cache=True, fastmath=True, nogil=True)
def periodic_dist2(x, y, L):
    d2 = 0.0
    half = 0.5 * L
    for k in range(x.size):
        d = x[k] - y[k]
        if d > half:
            d -= L
        elif d < -half:
            d += L
        d2 += d * d
    return d2


@njit(cache=True, fastmath=True, nogil=True)
def neighbors_within(pos, i, reach, L):
    """
    Indices of all particles other than ``i`` within ``reach`` of particle ``i``
    under the minimum-image metric of the periodic box ``[0, L)^dim``.
    """
    n = pos.shape[0]
    out = np.empty(n, dtype=np.int64)
    r2 = reach * reach
    k = 0
    for j in range(n):
        if j == i:
            continue
        if periodic_dist2(pos[i], pos[j], L) <= r2:
            out[k] = j
            k += 1
    return out[:k]


@njit(cache=True, fastmath=True, nogil=True)
def _pair_counts(pos, reach, L):
    n = pos.shape[0]
    counts = np.zeros(n, dtype=np.int64)
    r2 = reach * reach
    for i in range(n):
        for j in range(i + 1, n):
            if periodic_dist2(pos[i], pos[j], L) <= r2:
                counts[i] += 1
                counts[j] += 1
    return counts


@njit(cache=True, fastmath=True, nogil=True)
def _pair_fill(pos, reach, L, indptr, indices):
    n = pos.shape[0]
    fill = indptr[:-1].copy()
    r2 = reach * reach
    for i in range(n):
        for j in range(i + 1, n):
            if periodic_dist2(pos[i], pos[j], L) <= r2:
                indices[fill[i]] = j
                fill[i] += 1
                indices[fill[j]] = i
                fill[j] += 1


def neighbor_lists(pos, reach, L):
    """
    CSR neighbour lists for fixed positions.

    Returns:
        (indptr, indices) such that the neighbours of ``i`` are
        ``indices[indptr[i]:indptr[i + 1]]``.
    """
    pos = np.ascontiguousarray(pos, dtype=np.float64)
    n = pos.shape[0]
    indptr = np.zeros(n + 1, dtype=np.int64)
    if reach <= 0.0 or n < 2:
        return indptr, np.empty(0, dtype=np.int64)
    counts = _pair_counts(pos, float(reach), float(L))
    np.cumsum(counts, out=indptr[1:])
    indices = np.empty(indptr[-1], dtype=np.int64)
    _pair_fill(pos, float(reach), float(L), indptr, indices)
    return indptr, indices
