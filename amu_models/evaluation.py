"""
evaluation.py
=============
Evaluation Reporter: per-family results, the run-level comparison and the
files written from it.

A FamilyResult is built completely before it is committed; the
ComparisonResult only ever appends, keyed by family name, so an aborted or
failed family never leaves a half-written entry behind.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error

from .cross_validation import ErrorCurve
from .partition import Partition

logger = logging.getLogger(__name__)

STATUS_OK = 'ok'
STATUS_RANK_DEFICIENT = 'rank_deficient'
STATUS_FAILED = 'failed'
STATUS_ABORTED = 'aborted'


def mse(y_true: Sequence[float], y_pred: Sequence[float]) -> float:
    """Mean squared error between actual and predicted values"""
    y_true = np.asarray(y_true, dtype=float).ravel()
    y_pred = np.asarray(y_pred, dtype=float).ravel()
    if y_true.shape != y_pred.shape:
        raise ValueError(f"{len(y_true)} actual values but {len(y_pred)} predictions")
    return float(mean_squared_error(y_true, y_pred))


def rank_importance(scores: Optional[Dict[str, float]], top_n: Optional[int] = 10,
                    absolute: bool = True) -> List[Tuple[str, float]]:
    """
    Top-N (feature, score) pairs, largest first.

    Args:
        scores: feature -> coefficient or importance score
        top_n: keep this many (None keeps all)
        absolute: rank by magnitude (coefficients) rather than signed value (scores)
    """
    if not scores:
        return []
    # sorted() is stable, so equal scores keep column order
    key = (lambda item: -abs(item[1])) if absolute else (lambda item: -item[1])
    ranked = sorted(scores.items(), key=key)
    return ranked[:top_n] if top_n is not None else ranked


@dataclass
class FamilyResult:
    """Outcome of evaluating one model family"""
    model_id: int
    key: str
    name: str
    status: str = STATUS_OK
    test_mse: Optional[float] = None
    train_mse: Optional[float] = None
    cv_mse: Optional[float] = None
    tuning_name: str = 'none'
    selected_param: Any = None
    importance: List[Tuple[str, float]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_curve: Optional[ErrorCurve] = None
    details: Dict[str, Any] = field(default_factory=dict)
    n_train: Optional[int] = None
    n_test: Optional[int] = None
    elapsed_seconds: Optional[float] = None

    @property
    def rankable(self) -> bool:
        return self.status == STATUS_OK and self.test_mse is not None and np.isfinite(self.test_mse)

    def top_features(self) -> List[str]:
        return [name for name, _ in self.importance]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model_id': self.model_id,
            'key': self.key,
            'name': self.name,
            'status': self.status,
            'test_mse': self.test_mse,
            'train_mse': self.train_mse,
            'cv_mse': self.cv_mse,
            'tuning_name': self.tuning_name,
            'selected_param': _plain(self.selected_param),
            'importance': [[name, float(score)] for name, score in self.importance],
            'warnings': list(self.warnings),
            'error': self.error,
            'details': _plain(self.details),
            'n_train': self.n_train,
            'n_test': self.n_test,
            'elapsed_seconds': self.elapsed_seconds,
        }


def _plain(value: Any) -> Any:
    """numpy scalars/arrays inside nested containers -> JSON-friendly Python values"""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    return value


class ComparisonResult:
    """
    Append-only mapping family key -> FamilyResult.

    commit() is the single merge point for results computed concurrently;
    a second commit under the same key raises.
    """

    def __init__(self):
        self._results: Dict[str, FamilyResult] = {}
        self._lock = threading.Lock()

    def commit(self, result: FamilyResult) -> None:
        with self._lock:
            if result.key in self._results:
                raise ValueError(f"Family '{result.key}' already has a committed result")
            self._results[result.key] = result
        logger.debug(f"Committed {result.key} ({result.status})")

    def __contains__(self, key: str) -> bool:
        return key in self._results

    def __getitem__(self, key: str) -> FamilyResult:
        return self._results[key]

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[FamilyResult]:
        return iter(sorted(self._results.values(), key=lambda r: r.model_id))

    def keys(self) -> List[str]:
        return [r.key for r in self]

    def ranking(self) -> List[FamilyResult]:
        """Scored families by test MSE (lowest first); flagged families are left out"""
        return sorted((r for r in self if r.rankable), key=lambda r: (r.test_mse, r.model_id))

    def best(self) -> Optional[FamilyResult]:
        ranked = self.ranking()
        return ranked[0] if ranked else None

    def unscored(self) -> List[FamilyResult]:
        return [r for r in self if not r.rankable]

    def to_frame(self) -> pd.DataFrame:
        """One row per family, ranked families first"""
        rank = {r.key: i for i, r in enumerate(self.ranking(), 1)}
        rows = []
        for r in self:
            rows.append({
                'Rank': rank.get(r.key),
                'Model_ID': r.model_id,
                'Family': r.key,
                'Model_Name': r.name,
                'Status': r.status,
                'Test_MSE': r.test_mse,
                'CV_MSE': r.cv_mse,
                'Train_MSE': r.train_mse,
                'Tuning': r.tuning_name,
                'Selected': _plain(r.selected_param),
                'Top_Features': '; '.join(r.top_features()),
                'Warnings': '; '.join(r.warnings),
                'Error': r.error,
            })
        columns = ['Rank', 'Model_ID', 'Family', 'Model_Name', 'Status', 'Test_MSE', 'CV_MSE',
                   'Train_MSE', 'Tuning', 'Selected', 'Top_Features', 'Warnings', 'Error']
        df = pd.DataFrame(rows, columns=columns)
        df['_unranked'] = df['Rank'].isna()
        df = df.sort_values(['_unranked', 'Rank', 'Model_ID']).drop(columns='_unranked')
        return df.reset_index(drop=True)


# ============================================================================
# OUTPUT FILES
# ============================================================================

def prediction_frame(y: np.ndarray, partition: Partition,
                     predictions: Dict[str, np.ndarray]) -> pd.DataFrame:
    """Predicted-vs-actual for every row: row, dataset (Train/Test), actual, one column per family"""
    df = pd.DataFrame({
        'row': np.arange(len(y)),
        'dataset': partition.labels(),
        'actual': np.asarray(y, dtype=float),
    })
    for key, values in predictions.items():
        values = np.asarray(values, dtype=float)
        if len(values) != len(y):
            raise ValueError(f"{key}: {len(values)} predictions for {len(y)} rows")
        df[key] = values
    return df


def write_comparison(comparison: ComparisonResult, output_dir: Path) -> Path:
    output_file = Path(output_dir) / 'comparison.csv'
    comparison.to_frame().to_csv(output_file, index=False)
    logger.info(f"+ Saved comparison table: {output_file}")
    return output_file


def write_summary(comparison: ComparisonResult, output_dir: Path,
                  scenario: str = '', description: str = '',
                  configuration: str = '') -> Path:
    best = comparison.best()
    summary = {
        'timestamp': datetime.now().isoformat(),
        'scenario': scenario,
        'description': description,
        'configuration': configuration,
        'total_models': len(comparison),
        'successful_models': len(comparison.ranking()),
        'unscored_models': {r.key: r.status for r in comparison.unscored()},
        'best_model': None if best is None else {
            'id': best.model_id,
            'key': best.key,
            'name': best.name,
            'test_mse': best.test_mse,
            'cv_mse': best.cv_mse,
        },
        'all_results': {r.key: r.to_dict() for r in comparison},
    }
    output_file = Path(output_dir) / 'summary.json'
    with open(output_file, 'w') as f:
        json.dump(summary, f, indent=2, default=str)
    logger.info(f"+ Saved summary: {output_file}")
    return output_file


def write_predictions(frame: pd.DataFrame, output_dir: Path) -> Path:
    output_file = Path(output_dir) / 'predictions.csv'
    frame.to_csv(output_file, index=False)
    logger.info(f"+ Saved combined predictions: {output_file}")
    logger.info(f"  Train records: {(frame['dataset'] == 'Train').sum()}")
    logger.info(f"  Test records: {(frame['dataset'] == 'Test').sum()}")
    return output_file


def write_error_curves(comparison: ComparisonResult, output_dir: Path) -> Path:
    curves = {r.key: r.error_curve.to_dict() for r in comparison if r.error_curve is not None}
    output_file = Path(output_dir) / 'error_curves.json'
    with open(output_file, 'w') as f:
        json.dump(curves, f, indent=2, default=str)
    logger.info(f"+ Saved error curves: {output_file}")
    return output_file
