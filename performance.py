# performance.py

import numpy as np
from sklearn.metrics import accuracy_score


class PerformanceError(ValueError):
    """Raised when predictions cannot be scored against the ground truth."""


def performance(y_truth, y_pred, num_classes):
    """
    Score a single prediction vector.

    - num_classes == 1 (regression): relative error ||y_pred - y_truth|| / ||y_truth||
    - num_classes == 2 (binary, labels in {-1,+1}): accuracy% in [0, 100],
      a point counts when truth and prediction have the same strict sign
    """
    y_truth = np.asarray(y_truth, dtype=np.float64).ravel()
    y_pred = np.asarray(y_pred, dtype=np.float64).ravel()
    if y_truth.shape[0] != y_pred.shape[0]:
        raise PerformanceError(
            f"Vector lengths mismatch: truth has {y_truth.shape[0]}, prediction has {y_pred.shape[0]}"
        )
    if num_classes not in (1, 2):
        raise PerformanceError(
            f"Neither regression nor binary classification (num_classes = {num_classes})"
        )
    if y_truth.shape[0] == 0:
        raise PerformanceError("Nothing to score: empty ground truth")

    if num_classes == 1:
        truth_norm = np.linalg.norm(y_truth)
        if truth_norm == 0.0:
            raise PerformanceError("Relative error undefined for an all-zero ground truth")
        return float(np.linalg.norm(y_pred - y_truth) / truth_norm)

    return float(np.mean(y_truth * y_pred > 0) * 100.0)


def predicted_classes(Y_pred):
    # np.argmax keeps the first maximum, i.e. the lowest class index on ties.
    return np.argmax(Y_pred, axis=1)


def multiclass_performance(y_truth, Y_pred, num_classes):
    """Top-1 accuracy% of an (n, num_classes) score matrix against integer labels."""
    y_truth = np.asarray(y_truth).ravel()
    Y_pred = np.asarray(Y_pred, dtype=np.float64)
    if Y_pred.ndim != 2 or Y_pred.shape[0] != y_truth.shape[0] or Y_pred.shape[1] != num_classes:
        raise PerformanceError(
            f"Size mismatch: truth has {y_truth.shape[0]} rows, prediction has shape {Y_pred.shape}, "
            f"num_classes = {num_classes}"
        )
    if num_classes <= 2:
        raise PerformanceError(f"Not multiclass classification (num_classes = {num_classes})")
    if y_truth.shape[0] == 0:
        raise PerformanceError("Nothing to score: empty ground truth")

    return float(accuracy_score(y_truth.astype(np.int64), predicted_classes(Y_pred)) * 100.0)
