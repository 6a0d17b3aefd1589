import math

import numpy as np


class IndexedMinHeap:
    """
    Binary min-heap of (time, handle) pairs over the handles ``0..n-1``.

    Every handle is always present; a handle with nothing scheduled carries
    ``inf``. ``pos[h]`` tracks where handle ``h`` sits in the heap so a single
    handle's key can be changed in O(log n) without searching.
    """

    def __init__(self, times):
        times = np.asarray(times, dtype=np.float64)
        self.n = times.size
        self.keys = times.copy()
        self.heap = list(range(self.n))
        self.pos = list(range(self.n))
        for i in range(self.n // 2 - 1, -1, -1):
            self._sift_down(i)

    def __len__(self):
        return self.n

    def top(self):
        """Return ``(time, handle)`` of the earliest pending event."""
        if self.n == 0:
            return math.inf, -1
        h = self.heap[0]
        return self.keys[h], h

    def key(self, handle):
        return self.keys[handle]

    def update(self, handle, time):
        """Set the key of ``handle``, moving it up or down as needed."""
        old = self.keys[handle]
        self.keys[handle] = time
        i = self.pos[handle]
        if time < old:
            self._sift_up(i)
        elif time > old:
            self._sift_down(i)

    def _swap(self, i, j):
        heap = self.heap
        heap[i], heap[j] = heap[j], heap[i]
        self.pos[heap[i]] = i
        self.pos[heap[j]] = j

    def _sift_up(self, i):
        keys, heap = self.keys, self.heap
        while i > 0:
            parent = (i - 1) >> 1
            if keys[heap[i]] < keys[heap[parent]]:
                self._swap(i, parent)
                i = parent
            else:
                break

    def _sift_down(self, i):
        keys, heap, n = self.keys, self.heap, self.n
        while True:
            left = 2 * i + 1
            if left >= n:
                break
            child = left
            right = left + 1
            if right < n and keys[heap[right]] < keys[heap[left]]:
                child = right
            if keys[heap[child]] < keys[heap[i]]:
                self._swap(i, child)
                i = child
            else:
                break
