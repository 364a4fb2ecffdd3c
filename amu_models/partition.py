"""
partition.py
============
Deterministic train/test partitioning and k-fold assignment.

Both objects are created once per pipeline run from a fixed seed and are
read-only afterwards: the index arrays are flagged non-writeable.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Tuple

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _frozen(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=int)
    values.setflags(write=False)
    return values


@dataclass(frozen=True)
class Partition:
    """Disjoint train/test row indices covering every row of a dataset"""
    train: np.ndarray
    test: np.ndarray
    seed: int

    @property
    def n_rows(self) -> int:
        return len(self.train) + len(self.test)

    def labels(self) -> np.ndarray:
        """'Train'/'Test' label per row index"""
        labels = np.empty(self.n_rows, dtype=object)
        labels[self.train] = 'Train'
        labels[self.test] = 'Test'
        return labels


@dataclass(frozen=True)
class FoldAssignment:
    """Fold id in [1, k] for every row"""
    fold_ids: np.ndarray
    k: int
    seed: int

    @property
    def n_rows(self) -> int:
        return len(self.fold_ids)

    def sizes(self) -> np.ndarray:
        return np.bincount(self.fold_ids, minlength=self.k + 1)[1:]

    def min_train_size(self) -> int:
        """Smallest number of rows any fold's model is fitted on"""
        return int(self.n_rows - self.sizes().max())

    def splits(self) -> Iterator[Tuple[int, np.ndarray, np.ndarray]]:
        """Yield (fold, fit_indices, held_out_indices) for folds 1..k"""
        for fold in range(1, self.k + 1):
            held_out = np.flatnonzero(self.fold_ids == fold)
            fit_rows = np.flatnonzero(self.fold_ids != fold)
            yield fold, fit_rows, held_out


def split(n_rows: int, train_fraction: float = 0.5, seed: int = 1) -> Partition:
    """
    Shuffle row indices with a seeded generator and cut them into a
    training block of round(n_rows * train_fraction) rows and a test block.

    Raises:
        ConfigurationError: if either side of the split would be empty
    """
    if not 0.0 < train_fraction < 1.0:
        raise ConfigurationError(f"train_fraction must be in (0, 1), got {train_fraction}")

    n_train = int(round(n_rows * train_fraction))
    if n_train < 1 or n_train >= n_rows:
        raise ConfigurationError(
            f"train_fraction={train_fraction} on {n_rows} rows gives "
            f"{n_train} training and {n_rows - n_train} test rows; both must be non-empty"
        )

    rng = np.random.RandomState(seed)
    indices = np.arange(n_rows)
    rng.shuffle(indices)

    partition = Partition(train=_frozen(np.sort(indices[:n_train])),
                          test=_frozen(np.sort(indices[n_train:])),
                          seed=seed)
    logger.info(f"Partition: {len(partition.train)} training, {len(partition.test)} test (seed={seed})")
    return partition


def make_folds(n_rows: int, k: int = 10, seed: int = 1) -> FoldAssignment:
    """
    Assign each row to one of k folds. Fold labels 1..k are dealt round-robin
    and then shuffled, so fold sizes differ by at most one.

    Raises:
        ConfigurationError: if k < 2 or k > n_rows
    """
    if k < 2:
        raise ConfigurationError(f"Need at least 2 folds, got k={k}")
    if k > n_rows:
        raise ConfigurationError(f"Cannot make k={k} folds from {n_rows} rows")

    rng = np.random.RandomState(seed)
    fold_ids = np.arange(n_rows) % k + 1
    rng.shuffle(fold_ids)

    return FoldAssignment(fold_ids=_frozen(fold_ids), k=k, seed=seed)
