# krr_randbin.py
#
# One-vs-all kernel ridge regression with the Laplace kernel
# k(x, y) = exp(-||x - y||_1 / sigma), approximated by Random Binning features.
#
# Usage:
#   python krr_randbin.py NumThreads FileTrain FileTest NumClasses d r
#       Num_lambda List_lambda Num_sigma List_sigma MaxIt Tol Verbose [--seed S]
#
# A negative seed draws a fresh seed from OS entropy; the seed used is printed
# so the run can be repeated.
#
# NumClasses = 1 is regression (relative error), 2 is binary classification,
# > 2 is multiclass; accuracies are reported in percent. Data files are LibSVM
# format with 1-based feature indices and class labels 0..NumClasses-1.

import argparse
import sys
import time
from dataclasses import dataclass
from typing import List

from data_io import DataFormatError, read_libsvm
from one_vs_all import resolve_seed, sweep, training_targets
from random_binning import points_from_csr
from sparse_features import set_num_threads


@dataclass(frozen=True)
class RunConfig:
    num_threads: int
    train_file: str
    test_file: str
    num_classes: int
    d: int
    r: int
    lambdas: List[float]
    sigmas: List[float]
    max_iter: int
    tol: float
    verbose: bool
    seed: int = 0


def _counted_list(tokens, pos, name, cast):
    try:
        count = int(tokens[pos])
    except (IndexError, ValueError):
        raise ValueError(f"expected the number of {name} values") from None
    if count < 1:
        raise ValueError(f"Num_{name} must be >= 1, got {count}")
    values = tokens[pos + 1:pos + 1 + count]
    if len(values) != count:
        raise ValueError(f"expected {count} {name} values, got {len(values)}")
    return [cast(v) for v in values], pos + 1 + count


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="One-vs-all kernel ridge regression with Random Binning features."
    )
    parser.add_argument("num_threads", type=int)
    parser.add_argument("train_file")
    parser.add_argument("test_file")
    parser.add_argument("num_classes", type=int)
    parser.add_argument("d", type=int, help="data dimension")
    parser.add_argument("r", type=int, help="number of random binning functions")
    parser.add_argument(
        "grid", nargs="+",
        help="Num_lambda List_lambda Num_sigma List_sigma MaxIt Tol Verbose",
    )
    parser.add_argument("--seed", type=int, default=0, help="seed of the random binning draws, < 0 draws one from OS entropy")
    args = parser.parse_args(argv)

    try:
        lambdas, pos = _counted_list(args.grid, 0, "lambda", float)
        sigmas, pos = _counted_list(args.grid, pos, "sigma", float)
        tail = args.grid[pos:]
        if len(tail) != 3:
            raise ValueError(f"expected MaxIt Tol Verbose after the sigma list, got {tail}")
        max_iter, tol, verbose = int(tail[0]), float(tail[1]), bool(int(tail[2]))
        if args.num_threads < 1 or args.num_classes < 1 or args.d < 1 or args.r < 1:
            raise ValueError("NumThreads, NumClasses, d and r must all be >= 1")
        if any(lam < 0 for lam in lambdas) or any(s <= 0 for s in sigmas):
            raise ValueError("lambda values must be >= 0 and sigma values > 0")
    except ValueError as exc:
        parser.error(str(exc))

    return RunConfig(
        num_threads=args.num_threads,
        train_file=args.train_file,
        test_file=args.test_file,
        num_classes=args.num_classes,
        d=args.d,
        r=args.r,
        lambdas=lambdas,
        sigmas=sigmas,
        max_iter=max_iter,
        tol=tol,
        verbose=verbose,
        seed=args.seed,
    )


def main(argv=None):
    cfg = parse_args(argv)
    num_threads = set_num_threads(cfg.num_threads)
    seed = resolve_seed(cfg.seed)

    t0 = time.perf_counter()
    try:
        X_train, y_train = read_libsvm(cfg.train_file, cfg.d)
        X_test, y_test = read_libsvm(cfg.test_file, cfg.d)
        # labels must fit NumClasses
        training_targets(y_train, cfg.num_classes)
    except (FileNotFoundError, DataFormatError, ValueError) as exc:
        print(f"Error: {exc}", flush=True)
        return -1
    print(f"RandBinning: time loading data = {time.perf_counter() - t0:g} seconds, "
          f"n train = {X_train.shape[0]}, m test = {X_test.shape[0]}, num threads = {num_threads}", flush=True)
    print(f"RandBinning: seed = {seed}", flush=True)

    t0 = time.perf_counter()
    train_points = points_from_csr(X_train)
    test_points = points_from_csr(X_test)
    print(f"RandBinning: Time (in seconds) for converting data format: {time.perf_counter() - t0:g}", flush=True)

    for res in sweep(train_points, y_train, test_points, y_test, cfg.num_classes, cfg.d, cfg.r,
                     cfg.lambdas, cfg.sigmas, cfg.max_iter, cfg.tol, seed, verbose=cfg.verbose):
        print(f"RandBinning: OneVsAll. r = {res.r}, D = {res.n_features}, param = {res.sigma:g} {res.lam:g}, "
              f"perf = {res.perf:g}, time = {res.time_train:g} {res.time_test:g}", flush=True)

    return 0


if __name__ == '__main__':
    sys.exit(main())
