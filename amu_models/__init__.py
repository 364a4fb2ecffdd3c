"""
Model evaluation harness for antimicrobial-usage regression models.

Dataset -> design matrix -> partition/folds -> per-family CV tuning,
refit and test scoring -> ComparisonResult.
"""

from .cross_validation import ErrorCurve, cross_validate
from .design_matrix import ColumnSpec, Dataset, DesignMatrixBuilder, build, infer_schema
from .errors import (ConfigurationError, EncodingMismatchError, FitAbortedError,
                     NumericInstabilityWarning, RankDeficiencyError)
from .evaluation import ComparisonResult, FamilyResult, mse, rank_importance
from .orchestrator import MODEL_CLASSES, ModelOrchestrator, run_pipeline
from .partition import FoldAssignment, Partition, make_folds, split

__version__ = "1.0.0"
