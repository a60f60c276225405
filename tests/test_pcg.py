import numpy as np
import pytest

from pcg import IdentityPreconditioner, Preconditioner, RidgeOperator, pcg_solve, relative_residual


def system(n, D, seed=0):
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((n, D))
    b = rng.standard_normal(D)
    return A, b


def direct(A, b, lam):
    return np.linalg.solve(A.T @ A + lam * np.eye(A.shape[1]), b)


class DiagonalPreconditioner(Preconditioner):
    def __init__(self, diag):
        self.diag = diag

    def apply(self, v):
        return v / self.diag


def test_matches_direct_solve(make_store):
    A, b = system(30, 10)
    lam = 0.5
    result = pcg_solve(make_store(A), b, max_iter=200, tol=1e-10, lam=lam)
    np.testing.assert_allclose(result.w, direct(A, b, lam), rtol=1e-6, atol=1e-8)


def test_residual_below_tolerance(make_store):
    A, b = system(40, 15, seed=1)
    lam, tol = 0.1, 1e-8
    result = pcg_solve(make_store(A), b, max_iter=500, tol=tol, lam=lam)
    true_residual = np.linalg.norm((A.T @ A + lam * np.eye(15)) @ result.w - b)
    assert true_residual <= 10 * tol * np.linalg.norm(b)
    assert result.res_history[-1] <= tol * np.linalg.norm(b)
    assert relative_residual(result) <= tol


def test_more_features_than_points(make_store):
    A, b = system(5, 12, seed=2)
    lam = 0.1
    result = pcg_solve(make_store(A), b, max_iter=200, tol=1e-10, lam=lam)
    np.testing.assert_allclose(result.w, direct(A, b, lam), rtol=1e-6, atol=1e-8)


def test_history_layout(make_store):
    A, b = system(20, 8, seed=3)
    result = pcg_solve(make_store(A), b, max_iter=100, tol=1e-6, lam=1.0)
    assert len(result.res_history) == result.iter_count + 1
    assert result.res_history[0] == pytest.approx(np.linalg.norm(b))
    assert result.rhs_norm == pytest.approx(np.linalg.norm(b))
    assert 0 < result.iter_count <= 100


def test_iteration_cap_returns_iterate(make_store):
    A, b = system(50, 20, seed=4)
    result = pcg_solve(make_store(A), b, max_iter=2, tol=1e-12, lam=1e-3)
    assert result.iter_count == 2
    assert result.w.shape == (20,)
    assert np.all(np.isfinite(result.w))
    assert relative_residual(result) > 1e-12
    # best iterate: residual no worse than the start
    assert min(result.res_history) <= result.res_history[0]


def test_zero_iterations(make_store):
    A, b = system(10, 4)
    result = pcg_solve(make_store(A), b, max_iter=0, lam=1.0)
    assert result.iter_count == 0
    np.testing.assert_array_equal(result.w, np.zeros(4))
    assert len(result.res_history) == 1


def test_zero_rhs(make_store):
    A, _ = system(10, 4)
    result = pcg_solve(make_store(A), np.zeros(4), lam=1.0)
    assert result.iter_count == 0
    np.testing.assert_array_equal(result.w, np.zeros(4))
    assert relative_residual(result) == 0.0


def test_initial_guess(make_store):
    A, b = system(30, 10, seed=5)
    lam = 0.3
    exact = direct(A, b, lam)
    result = pcg_solve(make_store(A), b, max_iter=50, tol=1e-8, lam=lam, x0=exact)
    assert result.iter_count <= 1
    np.testing.assert_allclose(result.w, exact, rtol=1e-6, atol=1e-8)


def test_several_right_hand_sides(make_store):
    A, _ = system(30, 10, seed=6)
    B = np.random.default_rng(6).standard_normal((10, 3))
    lam = 0.2
    store = make_store(A)
    result = pcg_solve(store, B, max_iter=200, tol=1e-10, num_rhs=3, lam=lam)
    assert result.w.shape == (10, 3)
    assert result.res_history.shape == (result.iter_count + 1, 3)
    for j in range(3):
        single = pcg_solve(store, B[:, j], max_iter=200, tol=1e-10, lam=lam)
        np.testing.assert_allclose(result.w[:, j], single.w, rtol=1e-6, atol=1e-8)


def test_preconditioners_are_interchangeable(make_store):
    A, b = system(30, 10, seed=7)
    lam = 0.5
    store = make_store(A)
    jacobi = DiagonalPreconditioner((A ** 2).sum(axis=0) + lam)
    plain = pcg_solve(store, b, IdentityPreconditioner(), max_iter=200, tol=1e-10, lam=lam)
    scaled = pcg_solve(store, b, jacobi, max_iter=200, tol=1e-10, lam=lam)
    np.testing.assert_allclose(plain.w, scaled.w, rtol=1e-6, atol=1e-8)


def test_duck_typed_preconditioner(make_store):
    class Halve:
        def apply(self, v):
            return 0.5 * v

    A, b = system(30, 10, seed=8)
    result = pcg_solve(make_store(A), b, Halve(), max_iter=200, tol=1e-10, lam=0.5)
    np.testing.assert_allclose(result.w, direct(A, b, 0.5), rtol=1e-6, atol=1e-8)


def test_training_residual_grows_with_lambda(make_store):
    rng = np.random.default_rng(9)
    base = rng.standard_normal((40, 3))
    # nearly collinear columns make A ill-conditioned
    A = np.hstack([base, base + 1e-4 * rng.standard_normal((40, 3))])
    y = rng.standard_normal(40)
    store = make_store(A)
    b = store.mat_vec(y, transpose=True)

    residuals = []
    for lam in [1e-3, 1e-1, 1.0, 10.0, 100.0]:
        w = pcg_solve(store, b, max_iter=500, tol=1e-10, lam=lam).w
        residuals.append(np.linalg.norm(A @ w - y))
    assert all(r2 >= r1 - 1e-6 for r1, r2 in zip(residuals, residuals[1:]))


def test_ridge_operator(make_store):
    A, _ = system(12, 5, seed=10)
    op = RidgeOperator(make_store(A), 0.7)
    p = np.arange(5.0)
    np.testing.assert_allclose(op.matvec(p), (A.T @ A + 0.7 * np.eye(5)) @ p)
    P = np.arange(10.0).reshape(5, 2)
    np.testing.assert_allclose(op.matmat(P), (A.T @ A + 0.7 * np.eye(5)) @ P)


@pytest.mark.parametrize("kwargs", [
    {"max_iter": -1},
    {"tol": -1.0},
    {"lam": -0.1},
    {"num_rhs": 2},
])
def test_invalid_arguments(make_store, kwargs):
    A, b = system(10, 4)
    with pytest.raises(ValueError):
        pcg_solve(make_store(A), b, **kwargs)


def test_rhs_length_mismatch(make_store):
    A, _ = system(10, 4)
    with pytest.raises(ValueError):
        pcg_solve(make_store(A), np.ones(5))
