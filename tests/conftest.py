import numpy as np
import pytest

from sparse_features import SparseFeatureStore


def dense_store(A):
    """SparseFeatureStore holding every nonzero of a dense array."""
    A = np.asarray(A, dtype=np.float64)
    rows = [np.flatnonzero(row) for row in A]
    row_start = np.concatenate([[0], np.cumsum([len(c) for c in rows])])
    col_idx = np.concatenate(rows) if rows else np.zeros(0, dtype=np.int64)
    return SparseFeatureStore.from_arrays(row_start, col_idx, A[A != 0], A.shape[1])


@pytest.fixture
def make_store():
    return dense_store


def labelled_clusters(centers, n_per_class, spread, seed):
    rng = np.random.default_rng(seed)
    X, y = [], []
    for label, center in enumerate(centers):
        X.append(np.asarray(center) + spread * rng.standard_normal((n_per_class, len(center))))
        y.append(np.full(n_per_class, label, dtype=np.float64))
    return np.vstack(X), np.concatenate(y)


@pytest.fixture
def clusters():
    return labelled_clusters
