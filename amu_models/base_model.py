"""
base_model.py
=============
Base class for the antimicrobial-usage model families

Every family is one adapter exposing the same capability interface:
- fit(X, y, param) -> fitted model (opaque, owned by the adapter)
- predict(model, X) -> y_hat
- default_grid(X, y, n_rows) -> ordered hyperparameter grid, simplest first
- check_grid(grid, n_rows, n_features) -> raises ConfigurationError early

Adapters hold configuration only (seeds, ensemble sizes, priors). Fitted
models are returned, never stored on the adapter, so the same adapter can
be used from several worker processes at once.

Child classes implement:
- _fit_core(X, y, param) -> fitted model
- _predict_core(model, X) -> predictions
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class BaseAMUModel(ABC):
    """
    Base class for antimicrobial-usage regression models

    Class attributes:
        key: short family name used as the ComparisonResult key
        tuning_name: what the grid values mean ('lambda', 'size', ...)
        warn_on_boundary: whether a grid-endpoint selection is suspicious
        has_importance: whether importance() returns a ranking
        coefficient_importance: importance values are signed coefficients (rank by magnitude)
        grid_note: set by default_grid() when it had to shorten the grid
    """

    key: str = 'base'
    tuning_name: str = 'none'
    warn_on_boundary: bool = False
    has_importance: bool = False
    coefficient_importance: bool = False
    grid_note: Optional[str] = None

    def __init__(self, model_id: int, model_name: str, random_seed: int = 1):
        """
        Args:
            model_id: Model number (1-13)
            model_name: Descriptive name
            random_seed: Seed for every random step inside fit()
        """
        self.model_id = model_id
        self.model_name = model_name
        self.random_seed = random_seed
        self.logger = logging.getLogger(f"amu_models.MODEL_{model_id}")

    def __repr__(self):
        return f"{type(self).__name__}(model_id={self.model_id}, random_seed={self.random_seed})"

    # ========================================================================
    # LOGGING HELPERS
    # ========================================================================

    def log_section(self, title: str, char: str = "-"):
        """Log section header"""
        self.logger.info("")
        self.logger.info(char * 60)
        self.logger.info(title.upper())
        self.logger.info(char * 60)

    def log_feature_importance(self, feature_stats, model_type: str = "Model", top_n: Optional[int] = None):
        """
        Log a feature table sorted by its main metric.

        Args:
            feature_stats: Dict name -> value, or list of dicts with 'name' and one of
                           'coefficient' (sorted by magnitude) or 'importance'
            model_type: label for the header
            top_n: only log the first top_n rows
        """
        if isinstance(feature_stats, dict):
            feature_list = []
            for name, data in feature_stats.items():
                if isinstance(data, dict):
                    feature_list.append({'name': name, **data})
                else:
                    feature_list.append({'name': name, 'importance': data})
        else:
            feature_list = list(feature_stats)

        if not feature_list:
            return

        if 'coefficient' in feature_list[0]:
            feature_list.sort(key=lambda x: abs(x.get('coefficient', 0)), reverse=True)
            metric_name = 'coefficient'
        else:
            feature_list.sort(key=lambda x: abs(x.get('importance', 0)), reverse=True)
            metric_name = 'importance'

        shown = feature_list[:top_n] if top_n is not None else feature_list
        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info(f"{model_type} Feature Analysis ({len(shown)} of {len(feature_list)} Features)")
        self.logger.info("=" * 80)
        self.logger.info(f"Features sorted by {metric_name}:")
        self.logger.info("-" * 60)
        for idx, feat in enumerate(shown, 1):
            self._format_feature_line(idx, feat, metric_name)
        self.logger.info("=" * 80)

    def _format_feature_line(self, idx, feat, primary_metric):
        """Format a single feature line based on available metrics."""
        parts = [f"  {idx:3d}. {feat.get('name', 'unknown'):30s}"]

        if primary_metric == 'coefficient':
            parts.append(f"Beta={feat['coefficient']:10.4f}")
        else:
            parts.append(f"importance={feat['importance']:10.4f}")

        if 'std_error' in feat:
            parts.append(f"SE={feat['std_error']:9.4f}")
        if 'p_value' in feat:
            if feat['p_value'] < 0.0001:
                parts.append("p<0.0001")
            else:
                parts.append(f"p={feat['p_value']:7.4f}")

        self.logger.info(" ".join(parts))

    # ========================================================================
    # ABSTRACT METHODS - Child classes must implement
    # ========================================================================

    @abstractmethod
    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> Any:
        """Core model fitting logic (child implements)"""
        pass

    @abstractmethod
    def _predict_core(self, model: Any, X: np.ndarray) -> np.ndarray:
        """Core prediction logic (child implements)"""
        pass

    # ========================================================================
    # TEMPLATE METHODS
    # ========================================================================

    def fit(self, X: np.ndarray, y: np.ndarray, param: Any = None) -> Any:
        """Fit one model at one hyperparameter value"""
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float).ravel()
        if X.ndim != 2:
            raise ValueError(f"X must be 2-D, got shape {X.shape}")
        if X.shape[0] != y.shape[0]:
            raise ValueError(f"X has {X.shape[0]} rows but y has {y.shape[0]}")
        return self._fit_core(X, y, param)

    def predict(self, model: Any, X: np.ndarray) -> np.ndarray:
        """Predict with a model produced by this adapter's fit()"""
        if model is None:
            raise ValueError("Model must be fitted before prediction")
        X = np.asarray(X, dtype=float)
        return np.asarray(self._predict_core(model, X), dtype=float).ravel()

    def fit_path(self, X: np.ndarray, y: np.ndarray, grid: Sequence[Any]) -> List[Any]:
        """
        One fitted model per grid value. Families that get the whole grid
        from a single search (subset selection) override this.
        """
        return [self.fit(X, y, param) for param in grid]

    # ========================================================================
    # HYPERPARAMETER GRID
    # ========================================================================

    def default_grid(self, X: np.ndarray, y: np.ndarray, n_rows: Optional[int] = None) -> List[Any]:
        """
        Candidate hyperparameters ordered simplest first.

        Args:
            X, y: tuning data (the training partition)
            n_rows: fewest rows any CV fit will see; grids are clipped to it
        """
        return [None]

    def check_rows(self, n_rows: int, n_features: int) -> None:
        """Raise ConfigurationError if the family cannot run at all on n_rows"""
        if n_rows < 2:
            raise ConfigurationError(f"{self.model_name}: need at least 2 fitting rows, got {n_rows}")

    def param_feasible(self, param: Any, n_rows: int, n_features: int) -> bool:
        return True

    def check_grid(self, grid: Sequence[Any], n_rows: int, n_features: int) -> None:
        """
        Validate a grid before any fitting starts.

        Raises:
            ConfigurationError: empty grid, or values the fold sizes cannot support
        """
        if len(grid) == 0:
            raise ConfigurationError(f"{self.model_name}: empty hyperparameter grid")
        self.check_rows(n_rows, n_features)
        infeasible = [param for param in grid if not self.param_feasible(param, n_rows, n_features)]
        if infeasible:
            raise ConfigurationError(
                f"{self.model_name}: {self.tuning_name} values {infeasible} need more than "
                f"{n_rows} fitting rows / {n_features} columns"
            )

    def format_param(self, param: Any) -> str:
        if param is None:
            return "-"
        if isinstance(param, (float, np.floating)):
            return f"{self.tuning_name}={param:.6g}"
        return f"{self.tuning_name}={param}"

    # ========================================================================
    # REPORTING HOOKS
    # ========================================================================

    def importance(self, model: Any, X: np.ndarray, y: np.ndarray,
                   feature_names: Sequence[str]) -> Optional[Dict[str, float]]:
        """Feature -> importance score, or None if the family has none"""
        return None

    def describe(self, model: Any, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        """Family-specific diagnostics of a fitted model"""
        return {}
