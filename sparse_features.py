# sparse_features.py

import numpy as np
import scipy.sparse
from numba import njit, prange
import numba


# --- Threaded CSR kernels ---
# Each output entry is owned by exactly one worker. The transposed product
# runs the same gather over the column-compressed copy of the store, so no
# worker ever scatters into shared memory.

@njit(parallel=True, cache=True)
def csr_mv(Xd, Xidx, Xptr, vec, out):
    n_rows = Xptr.shape[0] - 1
    for i in prange(n_rows):
        s = 0.0
        for p in range(Xptr[i], Xptr[i + 1]):
            s += Xd[p] * vec[Xidx[p]]
        out[i] = s


def set_num_threads(num_threads):
    """Size the worker pool used by the mat-vec kernels. Returns the count actually used."""
    if num_threads < 1:
        raise ValueError(f"num_threads must be >= 1, got {num_threads}")
    n = min(int(num_threads), numba.config.NUMBA_NUM_THREADS)
    numba.set_num_threads(n)
    return n


class SparseFeatureStore:
    """
    Row-compressed (n_rows x n_cols) matrix of random binning features.

    Buffers:
    - row_start: int64, length n_rows + 1, row i lives in [row_start[i], row_start[i+1])
    - col_idx:   int32, length nnz, column of each stored entry
    - values:    float64, length nnz

    The store doubles as the linear operator Z used by the solver through
    mat_vec / mat_mat.
    """

    def __init__(self, n_rows, n_cols, nnz):
        if n_rows < 0 or n_cols < 0 or nnz < 0:
            raise ValueError(f"invalid store size ({n_rows}, {n_cols}, nnz={nnz})")
        self.row_start = np.zeros(n_rows + 1, dtype=np.int64)
        self.col_idx = np.zeros(nnz, dtype=np.int32)
        self.values = np.zeros(nnz, dtype=np.float64)
        self._n_cols = int(n_cols)
        self._released = False
        self._transposed = None

    @classmethod
    def from_arrays(cls, row_start, col_idx, values, n_cols):
        row_start = np.asarray(row_start, dtype=np.int64)
        col_idx = np.asarray(col_idx, dtype=np.int32)
        values = np.asarray(values, dtype=np.float64)
        if row_start.ndim != 1 or row_start.shape[0] < 1:
            raise ValueError("row_start must be a 1-D array of length n_rows + 1")
        if col_idx.shape != values.shape:
            raise ValueError(f"col_idx and values differ in length: {col_idx.shape[0]} vs {values.shape[0]}")
        if row_start[0] != 0 or row_start[-1] != col_idx.shape[0]:
            raise ValueError("row_start must begin at 0 and end at nnz")
        if np.any(np.diff(row_start) < 0):
            raise ValueError("row_start must be non-decreasing")
        if col_idx.size and (col_idx.min() < 0 or col_idx.max() >= n_cols):
            raise ValueError(f"column index out of range [0, {n_cols})")

        store = cls.__new__(cls)
        store.row_start = row_start
        store.col_idx = col_idx
        store.values = values
        store._n_cols = int(n_cols)
        store._released = False
        store._transposed = None
        return store

    # --- Shape ---

    @property
    def n_rows(self):
        return self.row_start.shape[0] - 1 if not self._released else 0

    @property
    def n_cols(self):
        return self._n_cols if not self._released else 0

    @property
    def nnz(self):
        return int(self.row_start[-1]) if not self._released else 0

    @property
    def shape(self):
        return (self.n_rows, self.n_cols)

    def __repr__(self):
        return f"SparseFeatureStore(n_rows={self.n_rows}, n_cols={self.n_cols}, nnz={self.nnz})"

    def _check_alive(self):
        if self._released:
            raise RuntimeError("SparseFeatureStore has been released")

    # --- Rows ---

    def row(self, i):
        self._check_alive()
        if not 0 <= i < self.n_rows:
            raise IndexError(f"row {i} out of range for {self.n_rows} rows")
        lo, hi = self.row_start[i], self.row_start[i + 1]
        return self.col_idx[lo:hi], self.values[lo:hi]

    def get_subset(self, start_row, num_rows):
        """Copy rows [start_row, start_row + num_rows) into an independent store."""
        self._check_alive()
        if start_row < 0 or num_rows < 0 or start_row + num_rows > self.n_rows:
            raise ValueError(
                f"subset [{start_row}, {start_row + num_rows}) out of range for {self.n_rows} rows"
            )
        lo = self.row_start[start_row]
        hi = self.row_start[start_row + num_rows]
        subset = SparseFeatureStore(num_rows, self._n_cols, hi - lo)
        subset.row_start[:] = self.row_start[start_row:start_row + num_rows + 1] - lo
        subset.col_idx[:] = self.col_idx[lo:hi]
        subset.values[:] = self.values[lo:hi]
        return subset

    def release(self):
        self.row_start = np.zeros(1, dtype=np.int64)
        self.col_idx = np.zeros(0, dtype=np.int32)
        self.values = np.zeros(0, dtype=np.float64)
        self._released = True
        self._transposed = None

    def to_csr(self):
        self._check_alive()
        return scipy.sparse.csr_matrix(
            (self.values, self.col_idx, self.row_start), shape=self.shape, copy=False
        )

    # --- Linear operator ---

    def _transpose_index(self):
        # Column-compressed copy, built on the first transposed product and kept
        # until release(). Buffers must not be rewritten after that point.
        if self._transposed is None:
            csc = self.to_csr().tocsc()
            csc.sort_indices()
            self._transposed = (
                np.ascontiguousarray(csc.data, dtype=np.float64),
                np.ascontiguousarray(csc.indices, dtype=np.int32),
                np.ascontiguousarray(csc.indptr, dtype=np.int64),
            )
        return self._transposed

    def mat_vec(self, x, transpose=False):
        """Return Z @ x, or Z.T @ x when transpose is set."""
        self._check_alive()
        x = np.ascontiguousarray(x, dtype=np.float64)
        n_in = self.n_rows if transpose else self._n_cols
        if x.ndim != 1 or x.shape[0] != n_in:
            raise ValueError(
                f"mat_vec{' (transpose)' if transpose else ''}: expected vector of length {n_in}, got shape {x.shape}"
            )

        if not transpose:
            out = np.zeros(self.n_rows, dtype=np.float64)
            csr_mv(self.values, self.col_idx, self.row_start, x, out)
            return out

        col_values, col_rows, col_start = self._transpose_index()
        out = np.zeros(self._n_cols, dtype=np.float64)
        csr_mv(col_values, col_rows, col_start, x, out)
        return out

    def mat_mat(self, X, transpose=False, transpose_x=False):
        """Column-wise mat_vec: Z @ X, with optional transposes of Z and X."""
        self._check_alive()
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2:
            raise ValueError(f"mat_mat expects a 2-D array, got shape {X.shape}")
        if transpose_x:
            X = X.T
        n_out = self._n_cols if transpose else self.n_rows
        out = np.zeros((n_out, X.shape[1]), dtype=np.float64)
        for j in range(X.shape[1]):
            out[:, j] = self.mat_vec(X[:, j], transpose=transpose)
        return out
