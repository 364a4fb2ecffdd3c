"""
design_matrix.py
================
Turns the cleaned farm table into a numeric design matrix.

The encoding map is fit ONCE on the full dataset and then applied to any
subset (train, test, fold). A subset that happens to miss a factor level
still gets that level's dummy column, filled with zeros, so every matrix
built from the same Dataset has the same columns in the same order.

Categorical fields are dummy-coded with the first level (sorted order) as
the dropped reference, the usual linear-model convention.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pandas.api import types as ptypes

from .errors import ConfigurationError, EncodingMismatchError

logger = logging.getLogger(__name__)

NUMERIC = 'numeric'
CATEGORICAL = 'categorical'
DEFAULT_TARGET = 'total_mg_pcu'


def infer_schema(table: pd.DataFrame,
                 target: str = DEFAULT_TARGET,
                 categorical_fields: Optional[Sequence[str]] = None) -> Dict[str, str]:
    """
    Field -> 'numeric' / 'categorical' for every predictor column.

    Object, category and bool columns are categorical; numeric columns are
    numeric unless named in categorical_fields (integer-coded factors).
    """
    forced = set(categorical_fields or [])
    unknown = forced - set(table.columns)
    if unknown:
        raise ConfigurationError(f"categorical_fields not in table: {sorted(unknown)}")

    schema = {}
    for name in table.columns:
        if name == target:
            continue
        series = table[name]
        if name in forced or not ptypes.is_numeric_dtype(series) or ptypes.is_bool_dtype(series):
            schema[name] = CATEGORICAL
        else:
            schema[name] = NUMERIC
    return schema


@dataclass(frozen=True)
class Dataset:
    """Cleaned table, target field and fixed schema for one pipeline run"""
    table: pd.DataFrame
    target: str
    schema: Dict[str, str]

    def __post_init__(self):
        if self.target not in self.table.columns:
            raise ConfigurationError(f"Target field '{self.target}' not in table")
        if not ptypes.is_numeric_dtype(self.table[self.target]):
            raise ConfigurationError(f"Target field '{self.target}' must be numeric")
        if self.target in self.schema:
            raise ConfigurationError("Target field cannot also be a predictor")

        missing_fields = [name for name in self.schema if name not in self.table.columns]
        if missing_fields:
            raise ConfigurationError(f"Schema fields not in table: {missing_fields}")
        bad_types = {name: kind for name, kind in self.schema.items() if kind not in (NUMERIC, CATEGORICAL)}
        if bad_types:
            raise ConfigurationError(f"Unknown field types: {bad_types}")

        columns = list(self.schema) + [self.target]
        n_missing = int(self.table[columns].isna().sum().sum())
        if n_missing:
            raise ConfigurationError(f"Dataset has {n_missing} missing values; clean the table first")

        # Own a private copy so later edits to the caller's frame cannot leak in
        object.__setattr__(self, 'table', self.table[columns].reset_index(drop=True).copy())

    @classmethod
    def from_table(cls, table: pd.DataFrame,
                   target: str = DEFAULT_TARGET,
                   categorical_fields: Optional[Sequence[str]] = None) -> 'Dataset':
        return cls(table=table, target=target,
                   schema=infer_schema(table, target, categorical_fields))

    @property
    def predictors(self) -> List[str]:
        return list(self.schema)

    @property
    def n_rows(self) -> int:
        return len(self.table)

    def target_vector(self) -> np.ndarray:
        return self.table[self.target].to_numpy(dtype=float)


@dataclass(frozen=True)
class ColumnSpec:
    """What one design-matrix column encodes"""
    name: str
    field: str
    level: Optional[Any] = None
    reference: Optional[Any] = None

    @property
    def is_dummy(self) -> bool:
        return self.level is not None


def _sorted_levels(values: pd.Series) -> List[Any]:
    levels = list(pd.unique(values))
    try:
        return sorted(levels)
    except TypeError:
        return sorted(levels, key=str)


@dataclass
class DesignMatrixBuilder:
    """Fits a column map on a Dataset and encodes any row subset with it"""
    levels: Dict[str, List[Any]] = field(default_factory=dict)
    column_spec: List[ColumnSpec] = field(default_factory=list)
    fields: List[str] = field(default_factory=list)
    schema: Dict[str, str] = field(default_factory=dict)

    def fit(self, dataset: Dataset) -> 'DesignMatrixBuilder':
        self.schema = dict(dataset.schema)
        self.fields = dataset.predictors
        self.levels = {}
        self.column_spec = []

        for name in self.fields:
            if self.schema[name] == NUMERIC:
                self.column_spec.append(ColumnSpec(name=name, field=name))
                continue
            levels = _sorted_levels(dataset.table[name])
            self.levels[name] = levels
            reference = levels[0]
            for level in levels[1:]:
                self.column_spec.append(ColumnSpec(name=f"{name}{level}", field=name,
                                                   level=level, reference=reference))

        n_numeric = sum(1 for kind in self.schema.values() if kind == NUMERIC)
        logger.info(f"Design matrix: {len(self.column_spec)} columns from {len(self.fields)} fields")
        logger.info(f"  Numeric: {n_numeric} fields")
        for name, levels in self.levels.items():
            logger.info(f"  {name}: {len(levels)} levels {levels} (reference: {levels[0]})")
        return self

    @property
    def feature_names(self) -> List[str]:
        return [spec.name for spec in self.column_spec]

    @property
    def n_columns(self) -> int:
        return len(self.column_spec)

    def transform(self, frame: pd.DataFrame) -> np.ndarray:
        """
        Encode rows of the fitted schema. Always returns n_columns columns;
        levels absent from `frame` become all-zero dummies.

        Raises:
            EncodingMismatchError: if a field is missing or a categorical value
                was not seen when the map was fit
        """
        if not self.column_spec and not self.fields:
            raise EncodingMismatchError("DesignMatrixBuilder has not been fit")

        absent = [name for name in self.fields if name not in frame.columns]
        if absent:
            raise EncodingMismatchError(f"Fields missing from subset: {absent}")

        blocks = []
        for name in self.fields:
            values = frame[name]
            if self.schema[name] == NUMERIC:
                blocks.append(values.to_numpy(dtype=float).reshape(-1, 1))
                continue

            levels = self.levels[name]
            codes = pd.Categorical(values, categories=levels).codes
            if (codes < 0).any():
                unseen = sorted(set(values[codes < 0]), key=str)
                raise EncodingMismatchError(f"Field '{name}' has levels {unseen} outside the fitted encoding")
            dummies = np.zeros((len(frame), len(levels) - 1))
            for j in range(1, len(levels)):
                dummies[:, j - 1] = (codes == j)
            blocks.append(dummies)

        X = np.hstack(blocks) if blocks else np.empty((len(frame), 0))
        if X.shape[1] != self.n_columns:
            raise EncodingMismatchError(f"Encoded {X.shape[1]} columns, expected {self.n_columns}")
        return X


def build(dataset: Dataset, target_field: Optional[str] = None) -> Tuple[np.ndarray, np.ndarray, List[ColumnSpec]]:
    """
    Encode a whole Dataset.

    Returns:
        (X, y, column_spec) with X of shape (n_rows, n_columns)
    """
    if target_field is not None and target_field != dataset.target:
        dataset = Dataset(table=dataset.table, target=target_field,
                          schema={k: v for k, v in dataset.schema.items() if k != target_field})
    builder = DesignMatrixBuilder().fit(dataset)
    X = builder.transform(dataset.table)
    y = dataset.target_vector()
    return X, y, builder.column_spec
