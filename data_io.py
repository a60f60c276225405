# data_io.py

import os

import numpy as np
from sklearn.datasets import load_svmlight_file


class DataFormatError(ValueError):
    """Raised when a LibSVM file cannot be read as d-dimensional points."""


def read_libsvm(path, d):
    """
    Load a LibSVM-format file with 1-based feature indices.

    Returns (X, y): X is a scipy CSR matrix of shape (n, d) whose column j holds
    feature j + 1, y is a float64 label vector. Compressed .gz/.bz2 files are
    handled by scikit-learn.
    """
    if d < 1:
        raise ValueError(f"d must be >= 1, got {d}")
    if not os.path.isfile(path):
        raise FileNotFoundError(f"The input file '{path}' was not found")

    try:
        X, y = load_svmlight_file(path, n_features=d, zero_based=False, dtype=np.float64)
    except ValueError as exc:
        raise DataFormatError(f"{path}: {exc}") from exc

    if X.shape[0] == 0:
        raise DataFormatError(f"{path}: no data points")
    if X.shape[1] != d:
        raise DataFormatError(f"{path}: expected dimension {d}, found {X.shape[1]}")

    return X.tocsr(), np.asarray(y, dtype=np.float64)
