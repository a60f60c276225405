# random_binning.py

import numpy as np
import scipy.sparse

from sparse_features import SparseFeatureStore

# Grid widths below MIN_WIDTH * sigma are re-drawn.
MIN_WIDTH = 1e-10


# --- Point adapters ---
# A point is a pair (indices, values): 1-based feature indices with the zero
# entries left out. The generator only ever sees points, never the storage
# the data loader happened to use.

def points_from_dense(X):
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError(f"expected a 2-D array of points, got shape {X.shape}")
    points = []
    for row in X:
        nz = np.flatnonzero(row)
        points.append((nz + 1, row[nz]))
    return points


def points_from_csr(X):
    X = scipy.sparse.csr_matrix(X, dtype=np.float64, copy=True)
    X.sum_duplicates()
    X.eliminate_zeros()
    points = []
    for i in range(X.shape[0]):
        lo, hi = X.indptr[i], X.indptr[i + 1]
        points.append((X.indices[lo:hi].astype(np.int64) + 1, X.data[lo:hi].copy()))
    return points


def _stack_points(points, dim):
    counts = np.zeros(len(points), dtype=np.int64)
    idx_parts, val_parts = [], []
    for i, (idx, val) in enumerate(points):
        idx = np.asarray(idx, dtype=np.int64)
        val = np.asarray(val, dtype=np.float64)
        if idx.shape != val.shape or idx.ndim != 1:
            raise ValueError(f"point {i}: indices and values must be 1-D and of equal length")
        if idx.size == 0:
            continue
        if idx.min() < 1 or idx.max() >= dim:
            raise ValueError(f"point {i}: feature index outside [1, {dim - 1}]")
        if np.unique(idx).size != idx.size:
            raise ValueError(f"point {i}: duplicate feature index")
        counts[i] = idx.size
        idx_parts.append(idx)
        val_parts.append(val)

    indptr = np.zeros(len(points) + 1, dtype=np.int64)
    np.cumsum(counts, out=indptr[1:])
    if not idx_parts:
        return indptr, np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float64)
    return indptr, np.concatenate(idx_parts), np.concatenate(val_parts)


def _mix64(z):
    # splitmix64 finalizer, a bijection on uint64
    z = (z ^ (z >> np.uint64(30))) * np.uint64(0xBF58476D1CE4E5B9)
    z = (z ^ (z >> np.uint64(27))) * np.uint64(0x94D049BB133111EB)
    return z ^ (z >> np.uint64(31))


def draw_widths(rng, dim, sigma):
    """Per-dimension grid widths, Gamma(2, sigma) distributed (Laplace kernel)."""
    widths = rng.gamma(2.0, sigma, size=dim)
    bad = widths < MIN_WIDTH * sigma
    while np.any(bad):
        widths[bad] = rng.gamma(2.0, sigma, size=int(bad.sum()))
        bad = widths < MIN_WIDTH * sigma
    return widths


def random_binning_features(points, dim, r, sigma, rng):
    """
    Map points to Random Binning features.

    Each of the r binning functions is a randomly scaled and shifted
    axis-aligned grid over the dim-dimensional augmented space. A point gets
    one feature per function: the id of the grid cell it falls in. Cells of
    function j are numbered consecutively after those of functions 0..j-1,
    so ids of different functions never collide.

    Only the stored (nonzero) coordinates are binned: a point is keyed by
    the order-free 64-bit sum of the hashes of its coordinates that fall
    outside the cell of 0. Distinct cells merge only on a hash collision.

    Two points share the cell of a function with probability
    exp(-||x - y||_1 / sigma), hence Z @ Z.T / r estimates the Laplace kernel.

    Parameters:
    - points: list of (indices, values) pairs, 1-based indices < dim
    - dim: augmented dimension d + 1 (slot 0 is the bias coordinate,
      equal for every point)
    - r: number of binning functions (nonzeros per row)
    - sigma: kernel bandwidth, > 0
    - rng: numpy.random.Generator, consumed sequentially

    Returns a SparseFeatureStore with exactly r unit entries per row.
    """
    if r < 1:
        raise ValueError(f"r must be >= 1, got {r}")
    if not sigma > 0:
        raise ValueError(f"sigma must be > 0, got {sigma}")
    if dim < 1:
        raise ValueError(f"dim must be >= 1, got {dim}")

    indptr, idx, val = _stack_points(points, dim)
    n = indptr.shape[0] - 1
    ids = np.empty((n, r), dtype=np.int64)
    offset = 0
    idx_key = _mix64(idx.astype(np.uint64))

    for j in range(r):
        widths = draw_widths(rng, dim, sigma)
        shifts = rng.uniform(0.0, widths)
        if n == 0:
            continue
        # A zero coordinate always lands in the cell of 0, so only the stored
        # entries that leave that cell tell points apart.
        base = np.floor((0.0 - shifts) / widths).astype(np.int64)
        cells = np.floor((val - shifts[idx]) / widths[idx]).astype(np.int64)
        entry_key = _mix64(idx_key ^ cells.view(np.uint64))
        entry_key[cells == base[idx]] = 0
        running = np.zeros(idx.shape[0] + 1, dtype=np.uint64)
        np.cumsum(entry_key, out=running[1:])
        point_key = running[indptr[1:]] - running[indptr[:-1]]

        keys_seen, inverse = np.unique(point_key, return_inverse=True)
        ids[:, j] = offset + inverse.reshape(-1)
        offset += keys_seen.shape[0]

    if offset > np.iinfo(np.int32).max:
        raise ValueError(f"too many random binning features ({offset}) for int32 column ids")

    return SparseFeatureStore.from_arrays(
        np.arange(n + 1, dtype=np.int64) * r,
        ids.ravel(),
        np.ones(n * r, dtype=np.float64),
        offset,
    )


def laplace_kernel(x, y, sigma):
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    return float(np.exp(-np.abs(x - y).sum() / sigma))


def kernel_estimate(store, i, j):
    """Fraction of binning functions under which rows i and j share a cell."""
    ci, _ = store.row(i)
    cj, _ = store.row(j)
    return float(np.mean(ci == cj))
