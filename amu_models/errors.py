"""
errors.py
=========
Error taxonomy for the model evaluation harness.

- ConfigurationError: partition/fold/grid parameters that the data cannot
  support. Raised before any fitting starts.
- RankDeficiencyError: a full-rank method was handed a design with more
  columns than usable rows. Reported as a flagged result, never scored.
- EncodingMismatchError: a subset does not match the fitted encoding.
- FitAbortedError: a family exceeded its time budget.
- NumericInstabilityWarning: non-fatal, e.g. a penalty chosen at the edge
  of its grid.
"""


class ConfigurationError(ValueError):
    """Invalid configuration relative to the dataset size"""


class RankDeficiencyError(ArithmeticError):
    """Design matrix is not of full column rank for the rows available"""

    def __init__(self, message: str, n_rows: int = None, n_columns: int = None, rank: int = None):
        super().__init__(message)
        self.n_rows = n_rows
        self.n_columns = n_columns
        self.rank = rank


class EncodingMismatchError(ValueError):
    """A table subset cannot be encoded with the fitted column map"""


class FitAbortedError(RuntimeError):
    """A model family ran past its deadline"""


class NumericInstabilityWarning(UserWarning):
    """Non-fatal numerical condition worth reporting alongside a result"""
