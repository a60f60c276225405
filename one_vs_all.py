# one_vs_all.py

import time
from collections import namedtuple

import numpy as np

from pcg import pcg_solve, relative_residual
from performance import PerformanceError, multiclass_performance, performance
from random_binning import random_binning_features

SweepResult = namedtuple(
    "SweepResult",
    ["lam", "sigma", "r", "n_features", "perf", "time_train", "time_test", "error"],
)


# --- Labels ---

def convert_labels(y, num_classes):
    """Recode integer labels 0..num_classes-1 into an (n, num_classes) matrix of +1/-1."""
    y = np.asarray(y, dtype=np.float64).ravel()
    labels = y.astype(np.int64)
    if np.any(labels != y):
        raise ValueError("class labels must be integers")
    if labels.size and (labels.min() < 0 or labels.max() >= num_classes):
        raise ValueError(f"class labels must lie in [0, {num_classes})")
    Y = -np.ones((y.shape[0], num_classes), dtype=np.float64)
    Y[np.arange(y.shape[0]), labels] = 1.0
    return Y


def signed_labels(y):
    """Binary targets as -1/+1. Labels 0/1 are mapped 0 -> -1, 1 -> +1."""
    y = np.asarray(y, dtype=np.float64).ravel()
    present = set(np.unique(y).tolist())
    if present <= {0.0, 1.0}:
        return np.where(y > 0, 1.0, -1.0)
    if present <= {-1.0, 1.0}:
        return y.copy()
    raise ValueError(f"binary labels must be 0/1 or -1/+1, found {sorted(present)}")


def training_targets(y, num_classes):
    if num_classes < 1:
        raise ValueError(f"num_classes must be >= 1, got {num_classes}")
    if num_classes == 1:
        return np.asarray(y, dtype=np.float64).ravel()
    if num_classes == 2:
        return signed_labels(y)
    return convert_labels(y, num_classes)


# --- Fit / predict / score ---

def train(Z_train, y_train, num_classes, lam, max_iter=1000, tol=1e-6, preconditioner=None, verbose=False):
    """
    Fit one ridge regression per class on the features Z_train:
    solve (Z'Z + lam I) w = Z'y without forming Z'Z.

    Returns (W, results): W is a vector of length n_features for regression and
    binary problems, an (n_features, num_classes) matrix otherwise; results
    holds the PCGResult of every solve.
    """
    Y = training_targets(y_train, num_classes)
    if Y.shape[0] != Z_train.n_rows:
        raise ValueError(f"{Y.shape[0]} labels for {Z_train.n_rows} training rows")
    if Y.ndim == 1:
        Y = Y[:, None]

    W = np.zeros((Z_train.n_cols, Y.shape[1]), dtype=np.float64)
    results = []
    for i in range(Y.shape[1]):
        b = Z_train.mat_vec(Y[:, i], transpose=True)
        result = pcg_solve(Z_train, b, preconditioner, max_iter, tol, 1, lam)
        if verbose:
            print(f"RandBinning: Train. PCG: class = {i}, iteration = {result.iter_count}, "
                  f"Relative residual = {relative_residual(result):g}", flush=True)
        W[:, i] = result.w
        results.append(result)

    if num_classes <= 2:
        return W[:, 0], results
    return W, results


def predict(Z_test, W):
    W = np.asarray(W, dtype=np.float64)
    if W.ndim == 1:
        return Z_test.mat_vec(W)
    return Z_test.mat_mat(W)


def score(y_test, predictions, num_classes):
    if num_classes > 2:
        return multiclass_performance(y_test, predictions, num_classes)
    if num_classes == 2:
        try:
            y_test = signed_labels(y_test)
        except ValueError as exc:
            raise PerformanceError(str(exc)) from exc
    return performance(y_test, predictions, num_classes)


# --- One sweep point ---

def evaluate(train_points, y_train, test_points, y_test, num_classes, d, r, lam, sigma, rng,
             max_iter=1000, tol=1e-6, preconditioner=None, verbose=False):
    """
    Run the full generate / fit / predict / score cycle for one (lam, sigma).

    Features for train and test points are generated jointly so both sides
    share the same binning functions, then split by row range. A scoring
    failure is reported in SweepResult.error with perf = nan.
    """
    n_train, n_test = len(train_points), len(test_points)
    time_train = 0.0

    t0 = time.perf_counter()
    Z = random_binning_features(list(train_points) + list(test_points), d + 1, r, sigma, rng)
    elapsed = time.perf_counter() - t0
    time_train += elapsed
    print(f"RandBinning: Train. Time (in seconds) for generating random binning features: {elapsed:g}", flush=True)

    t0 = time.perf_counter()
    Z_train = Z.get_subset(0, n_train)
    Z_test = Z.get_subset(n_train, n_test)
    n_features = Z.n_cols
    Z.release()
    elapsed = time.perf_counter() - t0
    time_train += elapsed
    print(f"RandBinning: Train. Time (in seconds) for splitting train/test features: {elapsed:g}", flush=True)

    t0 = time.perf_counter()
    W, _ = train(Z_train, y_train, num_classes, lam, max_iter, tol, preconditioner, verbose)
    elapsed = time.perf_counter() - t0
    time_train += elapsed
    print(f"RandBinning: Train. Time (in seconds) for solving linear system solution: {elapsed:g}", flush=True)

    t0 = time.perf_counter()
    predictions = predict(Z_test, W)
    error = None
    try:
        perf = score(y_test, predictions, num_classes)
    except PerformanceError as exc:
        print(f"RandBinning: Performance. Error: {exc}", flush=True)
        perf, error = float("nan"), str(exc)
    time_test = time.perf_counter() - t0

    Z_train.release()
    Z_test.release()
    return SweepResult(lam, sigma, r, n_features, perf, time_train, time_test, error)


def resolve_seed(seed):
    """Seed actually used for a run: a negative seed draws a fresh one from OS entropy."""
    if seed < 0:
        return int(np.random.SeedSequence().entropy)
    return int(seed)


def sweep_generators(seed, count):
    """One independent generator per sweep point, all derived from seed."""
    seq = np.random.SeedSequence(resolve_seed(seed))
    return [np.random.default_rng(s) for s in seq.spawn(count)]


def sweep(train_points, y_train, test_points, y_test, num_classes, d, r, lambdas, sigmas,
          max_iter=1000, tol=1e-6, seed=0, preconditioner=None, verbose=False):
    """
    Evaluate every (lam, sigma) pair, lambda in the outer loop.

    Each point draws its binning functions from its own generator, spawned
    from SeedSequence(seed) in sweep order; the same seed and grid always
    reproduce the same results. Results are yielded one point at a time.
    """
    lambdas, sigmas = list(lambdas), list(sigmas)
    rngs = iter(sweep_generators(seed, len(lambdas) * len(sigmas)))
    for lam in lambdas:
        for sigma in sigmas:
            rng = next(rngs)
            yield evaluate(train_points, y_train, test_points, y_test, num_classes, d, r, lam, sigma, rng,
                           max_iter, tol, preconditioner, verbose)
