# pcg.py

from abc import ABC, abstractmethod
from collections import namedtuple

import numpy as np


class Preconditioner(ABC):
    """
    Approximate inverse M^-1 of the system matrix. The solver only needs
    apply(v) -> M^-1 v on a single vector; any object with such a method is
    accepted in place of a subclass.
    """

    @abstractmethod
    def apply(self, v):
        pass


class IdentityPreconditioner(Preconditioner):
    def apply(self, v):
        return np.array(v, dtype=np.float64, copy=True)


class RidgeOperator:
    """(A.T @ A + lam * I) applied through two sparse products, never formed."""

    def __init__(self, A, lam):
        self.A = A
        self.lam = float(lam)

    def matvec(self, p):
        out = self.A.mat_vec(self.A.mat_vec(p), transpose=True)
        if self.lam != 0.0:
            out += self.lam * p
        return out

    def matmat(self, P):
        if P.shape[1] == 1:
            return self.matvec(P[:, 0])[:, None]
        out = self.A.mat_mat(self.A.mat_mat(P), transpose=True)
        if self.lam != 0.0:
            out += self.lam * P
        return out


# w: solution, same shape as b
# res_history: ||r_k|| for k = 0..iter_count, one column per right-hand side
# iter_count: iterations performed
# rhs_norm: ||b|| per right-hand side
PCGResult = namedtuple("PCGResult", ["w", "res_history", "iter_count", "rhs_norm"])


def relative_residual(result):
    """Final residual over ||b||; 0 for a zero right-hand side."""
    final = np.asarray(result.res_history)[-1]
    norm = np.where(result.rhs_norm > 0, result.rhs_norm, 1.0)
    rel = final / norm
    return float(rel) if np.ndim(rel) == 0 else rel


def _precondition(M, R):
    Z = np.empty_like(R)
    for j in range(R.shape[1]):
        Z[:, j] = M.apply(R[:, j])
    return Z


def pcg_solve(A, b, preconditioner=None, max_iter=1000, tol=1e-6, num_rhs=1, lam=0.0, x0=None):
    """
    Solve (A.T @ A + lam * I) w = b by preconditioned conjugate gradients.

    A is a SparseFeatureStore (anything with mat_vec/mat_mat works). With
    num_rhs > 1, b is (n_cols, num_rhs) and every column runs its own
    recurrence; a column stops once ||r|| <= tol * ||b|| for that column.

    Reaching max_iter is not an error: the iterate with the smallest residual
    seen is returned and the residuals are left in res_history.
    """
    if max_iter < 0:
        raise ValueError(f"max_iter must be >= 0, got {max_iter}")
    if tol < 0:
        raise ValueError(f"tol must be >= 0, got {tol}")
    if lam < 0:
        raise ValueError(f"lam must be >= 0, got {lam}")

    b = np.asarray(b, dtype=np.float64)
    squeeze = b.ndim == 1
    B = b[:, None] if squeeze else b
    if B.ndim != 2 or B.shape[1] != num_rhs:
        raise ValueError(f"b has shape {b.shape}, expected {num_rhs} right-hand side(s)")
    if B.shape[0] != A.n_cols:
        raise ValueError(f"b has {B.shape[0]} rows, operator has {A.n_cols} columns")

    M = preconditioner if preconditioner is not None else IdentityPreconditioner()
    op = RidgeOperator(A, lam)

    if x0 is None:
        X = np.zeros_like(B)
        R = B.copy()
    else:
        X = np.array(x0, dtype=np.float64).reshape(B.shape)
        R = B - op.matmat(X)

    bnorm = np.linalg.norm(B, axis=0)
    res = np.linalg.norm(R, axis=0)
    history = [res.copy()]
    best_X = X.copy()
    best_res = res.copy()

    Z = _precondition(M, R)
    P = Z.copy()
    rz = np.sum(R * Z, axis=0)
    active = res > tol * bnorm

    k = 0
    while k < max_iter and active.any():
        cols = np.flatnonzero(active)
        Pc = P[:, cols]
        AP = op.matmat(Pc)
        pAp = np.sum(Pc * AP, axis=0)
        broken = pAp <= 0.0
        alpha = np.where(broken, 0.0, rz[cols] / np.where(broken, 1.0, pAp))

        X[:, cols] += alpha * Pc
        R[:, cols] -= alpha * AP
        res[cols] = np.linalg.norm(R[:, cols], axis=0)
        k += 1
        history.append(res.copy())

        improved = res < best_res
        best_X[:, improved] = X[:, improved]
        best_res[improved] = res[improved]

        active[cols[broken]] = False
        active &= res > tol * bnorm
        nxt = cols[active[cols]]
        if nxt.size == 0:
            break

        Zn = _precondition(M, R[:, nxt])
        rz_new = np.sum(R[:, nxt] * Zn, axis=0)
        beta = rz_new / rz[nxt]
        P[:, nxt] = Zn + beta * P[:, nxt]
        rz[nxt] = rz_new

    res_history = np.array(history)
    if squeeze:
        return PCGResult(best_X[:, 0], res_history[:, 0], k, float(bnorm[0]))
    return PCGResult(best_X, res_history, k, bnorm)
