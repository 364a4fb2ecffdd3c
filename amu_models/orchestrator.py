"""
orchestrator.py
===============
Master orchestrator for the antimicrobial-usage model comparison.

Features:
- JSON-based configuration system
- Dataset, Partition and FoldAssignment built once and passed to every family
- Runs any of models 1-13 through the same CV/refit/test protocol
- A family that fails on configuration, encoding, rank or time budget is
  recorded with its status and the run continues
- Unexpected errors stop the orchestrator
- Writes comparison.csv, summary.json, predictions.csv and error_curves.json

Usage:
    python -m amu_models.orchestrator                          # Uses Orchestrator.json
    python -m amu_models.orchestrator --config MyConfig.json   # Uses custom config
    python -m amu_models.orchestrator --data cleaned.csv       # Override data_file
"""

import sys
import json
import time
import argparse
import traceback
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional
from datetime import datetime
import pandas as pd
import numpy as np
import logging

from .cross_validation import cross_validate
from .design_matrix import DEFAULT_TARGET, Dataset, DesignMatrixBuilder
from .errors import (ConfigurationError, EncodingMismatchError, FitAbortedError,
                     NumericInstabilityWarning, RankDeficiencyError)
from .evaluation import (STATUS_ABORTED, STATUS_FAILED, STATUS_OK, STATUS_RANK_DEFICIENT,
                         ComparisonResult, FamilyResult, mse, prediction_frame, rank_importance,
                         write_comparison, write_error_curves, write_predictions, write_summary)
from .model_1_ols import Model1OLS
from .model_2_subset import Model2BestSubset, Model3ForwardStepwise, Model4BackwardStepwise
from .model_5_ridge import Model5Ridge
from .model_6_lasso import Model6Lasso
from .model_7_pcr import Model7PCR
from .model_8_pls import Model8PLS
from .model_9_tree import Model9Tree
from .model_10_bagging import Model10Bagging
from .model_11_random_forest import Model11RandomForest
from .model_12_boosting import Model12Boosting
from .model_13_bart import Model13BART
from .partition import make_folds, split

# Model class registry
MODEL_CLASSES = {
    1: Model1OLS,
    2: Model2BestSubset,
    3: Model3ForwardStepwise,
    4: Model4BackwardStepwise,
    5: Model5Ridge,
    6: Model6Lasso,
    7: Model7PCR,
    8: Model8PLS,
    9: Model9Tree,
    10: Model10Bagging,
    11: Model11RandomForest,
    12: Model12Boosting,
    13: Model13BART,
}

REQUIRED_FIELDS = ['scenario_name', 'data_settings', 'models_to_run', 'model_settings']

# ============================================================================
# ORCHESTRATOR CLASS
# ============================================================================


class ModelOrchestrator:
    """
    Master orchestrator for running the model families against one dataset
    """

    def __init__(self, config_path: Optional[str] = "Orchestrator.json",
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize orchestrator

        Args:
            config_path: Path to JSON configuration file
            config: Already-loaded configuration (takes precedence over config_path)
        """
        self.config_path = Path(config_path) if config_path else None
        self.config = self.load_configuration(config)
        self.comparison = ComparisonResult()
        self.predictions: Dict[str, np.ndarray] = {}
        self.prediction_table: Optional[pd.DataFrame] = None

        # Setup logging
        self.setup_logging()

        # Create output directories
        self.setup_output_dirs()

    def load_configuration(self, config: Optional[Dict[str, Any]] = None) -> Dict:
        """Load and validate JSON configuration"""
        if config is None:
            if self.config_path is None or not self.config_path.exists():
                raise FileNotFoundError(
                    f"Configuration file not found: {self.config_path}\n"
                    f"Please create Orchestrator.json or specify --config"
                )
            with open(self.config_path, 'r') as f:
                config = json.load(f)

        # Validate required fields
        for field in REQUIRED_FIELDS:
            if field not in config:
                raise ConfigurationError(f"Missing required field in config: {field}")

        unknown = [m for m in config['models_to_run'] if int(m) not in MODEL_CLASSES]
        if unknown:
            raise ConfigurationError(f"Unknown model ids in models_to_run: {unknown}")

        data_settings = config['data_settings']
        fraction = data_settings.get('train_fraction', 0.5)
        if not 0.0 < float(fraction) < 1.0:
            raise ConfigurationError(f"train_fraction must be in (0, 1), got {fraction}")
        if int(data_settings.get('cv_folds', 10)) < 2:
            raise ConfigurationError("cv_folds must be at least 2")

        prediction_models = config.get('pipeline_settings', {}).get('prediction_models', [])
        unknown = [m for m in prediction_models if int(m) not in MODEL_CLASSES]
        if unknown:
            raise ConfigurationError(f"Unknown model ids in prediction_models: {unknown}")

        return config

    def setup_logging(self):
        """Setup logging system"""
        output_settings = self.config.get('output_settings', {})
        log_dir = Path(output_settings.get('log_dir', 'logs'))
        log_dir.mkdir(parents=True, exist_ok=True)

        log_file = log_dir / 'Orchestrator_log.txt'

        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            handlers=[
                logging.FileHandler(log_file),
                logging.StreamHandler(sys.stdout)
            ]
        )

        self.logger = logging.getLogger('Orchestrator')
        self.log_file = log_file

        self.logger.info("=" * 80)
        self.logger.info("AMU MODEL ORCHESTRATOR")
        self.logger.info("=" * 80)
        self.logger.info(f"Configuration: {self.config_path if self.config_path else '(in memory)'}")
        self.logger.info(f"Scenario: {self.config['scenario_name']}")
        self.logger.info(f"Log file: {log_file}")

    def setup_output_dirs(self):
        """Create output directory"""
        output_settings = self.config.get('output_settings', {})
        self.output_dir = Path(output_settings.get('output_base_dir', 'output'))
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.logger.info(f"Output directory: {self.output_dir}")

    # ========================================================================
    # DATA
    # ========================================================================

    def load_table(self) -> pd.DataFrame:
        """Read the cleaned table named by data_settings.data_file"""
        data_file = self.config['data_settings'].get('data_file')
        if not data_file:
            raise ConfigurationError("data_settings.data_file is not set and no table was given")
        path = Path(data_file)
        if not path.exists():
            raise FileNotFoundError(f"Data file not found: {path}")
        self.logger.info(f"Loading cleaned table: {path}")
        return pd.read_csv(path)

    def prepare(self, table: pd.DataFrame):
        """
        Build the run-level read-only inputs: encoded matrix, partition, folds.

        Raises:
            ConfigurationError: partition or fold parameters the data cannot
                support. Raised before any family is fitted.
        """
        data_settings = self.config['data_settings']
        seed = int(data_settings.get('random_seed', 1))

        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info("PREPARING DATA")
        self.logger.info("=" * 80)

        dataset = Dataset.from_table(table,
                                     target=data_settings.get('target', DEFAULT_TARGET),
                                     categorical_fields=data_settings.get('categorical_fields'))
        builder = DesignMatrixBuilder().fit(dataset)
        X = builder.transform(dataset.table)
        y = dataset.target_vector()

        partition = split(dataset.n_rows,
                          train_fraction=float(data_settings.get('train_fraction', 0.5)),
                          seed=seed)
        folds = make_folds(len(partition.train), k=int(data_settings.get('cv_folds', 10)), seed=seed)

        self.logger.info(f"Rows: {dataset.n_rows}, predictors: {len(dataset.predictors)}, "
                         f"design columns: {builder.n_columns}")
        self.logger.info(f"Folds over training rows: k={folds.k}, sizes {folds.sizes().tolist()}")
        return X, y, builder.feature_names, partition, folds

    # ========================================================================
    # MODELS
    # ========================================================================

    def build_model(self, model_id: int):
        """Instantiate a family adapter from its model_settings entry"""
        model_config = self.config['model_settings'].get(str(model_id), {})
        ModelClass = MODEL_CLASSES[model_id]
        params = dict(model_config.get('params', {}))
        params.setdefault('random_seed', int(self.config['data_settings'].get('random_seed', 1)))
        try:
            return ModelClass(**params)
        except TypeError as e:
            raise ConfigurationError(f"Invalid params for model {model_id}: {e}") from e

    def run_single_model(self, model_id: int, X: np.ndarray, y: np.ndarray,
                         feature_names: List[str], partition, folds) -> FamilyResult:
        """
        Run a single model family: tune by CV on the training rows, refit at
        the selected value, score on the test rows.

        Returns:
            FamilyResult (status ok, rank_deficient, failed or aborted)

        Raises:
            RuntimeError: on any unexpected error (stops orchestrator)
        """
        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info(f"RUNNING MODEL {model_id}")
        self.logger.info("=" * 80)

        model_config = self.config['model_settings'].get(str(model_id), {})
        pipeline_settings = self.config.get('pipeline_settings', {})
        ModelClass = MODEL_CLASSES[model_id]
        result = FamilyResult(model_id=model_id, key=ModelClass.key,
                              name=model_config.get('name', f'Model {model_id}'),
                              tuning_name=ModelClass.tuning_name,
                              n_train=len(partition.train), n_test=len(partition.test))
        self.logger.info(f"Model: {result.name}")

        timeout = pipeline_settings.get('family_timeout_seconds')
        start = time.time()
        deadline = start + float(timeout) if timeout else None

        try:
            model = self.build_model(model_id)
            X_train, y_train = X[partition.train], y[partition.train]
            X_test, y_test = X[partition.test], y[partition.test]

            curve = cross_validate(X_train, y_train, model,
                                   grid=model_config.get('grid'),
                                   folds=folds,
                                   n_jobs=int(pipeline_settings.get('n_jobs', 1)),
                                   deadline=deadline)
            param = curve.selected_param
            result.error_curve = curve
            result.selected_param = param
            result.cv_mse = curve.selected_error
            if model.grid_note:
                result.warnings.append(model.grid_note)
            self.logger.info(f"Selected {model.format_param(param)} (CV MSE {result.cv_mse:.4f}, "
                             f"{curve.selected_index + 1} of {len(curve.grid)})")

            if model.warn_on_boundary and curve.at_boundary():
                message = (f"{model.tuning_name} selected at grid endpoint "
                           f"({model.format_param(param)}); widen the grid")
                warnings.warn(f"{result.name}: {message}", NumericInstabilityWarning)
                result.warnings.append(message)
                self.logger.warning(message)

            fitted = model.fit(X_train, y_train, param)
            train_pred = model.predict(fitted, X_train)
            test_pred = model.predict(fitted, X_test)
            result.train_mse = mse(y_train, train_pred)
            result.test_mse = mse(y_test, test_pred)

            if model.has_importance:
                scores = model.importance(fitted, X_train, y_train, feature_names)
                result.importance = rank_importance(scores, top_n=pipeline_settings.get('top_n_features', 10),
                                                    absolute=model.coefficient_importance)
                model.log_feature_importance(dict(result.importance), model_type=result.name)
            result.details = model.describe(fitted, X_train, y_train, feature_names)

            if model_id in [int(m) for m in pipeline_settings.get('prediction_models', [])]:
                full = np.empty(len(y))
                full[partition.train] = train_pred
                full[partition.test] = test_pred
                self.predictions[result.key] = full

            result.status = STATUS_OK
            self.logger.info(f"+ Model {model_id} completed successfully")
            self.logger.info(f"  Test MSE: {result.test_mse:.4f}")
            self.logger.info(f"  CV MSE: {result.cv_mse:.4f}")

        except RankDeficiencyError as e:
            result.status = STATUS_RANK_DEFICIENT
            result.error = str(e)
            self.logger.warning(f"Model {model_id} rank deficient, excluded from ranking: {e}")

        except FitAbortedError as e:
            result.status = STATUS_ABORTED
            result.error = str(e)
            self.logger.warning(f"Model {model_id} aborted: {e}")

        except (ConfigurationError, EncodingMismatchError, FloatingPointError) as e:
            result.status = STATUS_FAILED
            result.error = str(e)
            self.logger.error(f"Model {model_id} failed: {e}")

        except Exception as e:
            # Log error and re-raise to stop orchestrator
            error_msg = f"FATAL ERROR in Model {model_id}: {str(e)}"
            self.logger.error(error_msg)
            self.logger.error(traceback.format_exc())

            raise RuntimeError(
                f"Model {model_id} failed. Stopping orchestrator.\n"
                f"Error: {str(e)}\n"
                f"See log file for details."
            ) from e

        if result.status != STATUS_OK:
            # Nothing partial survives a flagged family
            result.test_mse = None
            result.train_mse = None
            result.cv_mse = None
            result.importance = []
            self.predictions.pop(result.key, None)

        result.elapsed_seconds = time.time() - start
        return result

    def run_all_models(self, X: np.ndarray, y: np.ndarray, feature_names: List[str], partition, folds):
        """Run all configured models"""
        models_to_run = [int(m) for m in self.config['models_to_run']]

        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info(f"RUNNING {len(models_to_run)} MODELS")
        self.logger.info("=" * 80)
        self.logger.info(f"Models: {models_to_run}")

        for i, model_id in enumerate(models_to_run, 1):
            self.logger.info(f"[{i}/{len(models_to_run)}] Starting Model {model_id}...")
            result = self.run_single_model(model_id, X, y, feature_names, partition, folds)
            self.comparison.commit(result)

        flagged = self.comparison.unscored()
        self.logger.info("")
        self.logger.info("=" * 80)
        if flagged:
            self.logger.info(f"MODELS COMPLETED ({len(flagged)} NOT SCORED: "
                             f"{', '.join(f'{r.key}={r.status}' for r in flagged)})")
        else:
            self.logger.info("ALL MODELS COMPLETED SUCCESSFULLY")
        self.logger.info("=" * 80)

    # ========================================================================
    # REPORTING
    # ========================================================================

    def generate_reports(self, y: np.ndarray, partition):
        """Write comparison, summary, predictions and error curves"""
        self.logger.info("")
        self.logger.info("Generating comparison report...")

        write_comparison(self.comparison, self.output_dir)
        write_summary(self.comparison, self.output_dir,
                      scenario=self.config['scenario_name'],
                      description=self.config.get('description', ''),
                      configuration=self.config_path.name if self.config_path else '')
        write_error_curves(self.comparison, self.output_dir)

        if self.predictions:
            self.prediction_table = prediction_frame(y, partition, self.predictions)
            write_predictions(self.prediction_table, self.output_dir)
        else:
            self.logger.warning("No predictions requested or no prediction model succeeded")

        df = self.comparison.to_frame()
        pd.set_option('display.max_columns', None)
        pd.set_option('display.width', None)
        pd.set_option('display.float_format', '{:.4f}'.format)

        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info("MODEL PERFORMANCE COMPARISON")
        self.logger.info("=" * 80)
        self.logger.info("")
        self.logger.info(df[['Rank', 'Model_ID', 'Model_Name', 'Status', 'Test_MSE', 'CV_MSE',
                             'Selected']].to_string(index=False))

        best = self.comparison.best()
        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info("BEST MODEL")
        self.logger.info("=" * 80)
        if best is None:
            self.logger.info("No family produced a scored result")
        else:
            self.logger.info(f"Model {best.model_id}: {best.name}")
            self.logger.info(f"Test MSE: {best.test_mse:.4f}")
            self.logger.info(f"Top features: {', '.join(best.top_features()) or '-'}")

    def execute(self, table: Optional[pd.DataFrame] = None) -> ComparisonResult:
        """
        Run the full pipeline and return the ComparisonResult.

        Raises:
            ConfigurationError: fatal partition/fold/data problems (no result)
            RuntimeError: unexpected failure inside a family
        """
        if table is None:
            table = self.load_table()
        X, y, feature_names, partition, folds = self.prepare(table)
        self.run_all_models(X, y, feature_names, partition, folds)
        self.generate_reports(y, partition)
        return self.comparison

    def run(self, table: Optional[pd.DataFrame] = None) -> int:
        """Run complete orchestration pipeline; returns a process exit code"""
        try:
            start_time = datetime.now()

            self.execute(table)

            duration = datetime.now() - start_time
            self.logger.info("")
            self.logger.info("=" * 80)
            self.logger.info("ORCHESTRATION COMPLETE")
            self.logger.info("=" * 80)
            self.logger.info(f"Total time: {duration}")
            self.logger.info(f"Models run: {len(self.comparison)}")
            self.logger.info(f"Output directory: {self.output_dir}")
            self.logger.info("=" * 80)

            return 0  # Success

        except Exception as e:
            self.logger.error("")
            self.logger.error("=" * 80)
            self.logger.error("ORCHESTRATION FAILED")
            self.logger.error("=" * 80)
            self.logger.error(str(e))
            self.logger.error("=" * 80)

            return 1  # Failure


def run_pipeline(table: pd.DataFrame, config: Dict[str, Any]) -> ComparisonResult:
    """Programmatic entry point: run `config` against an in-memory cleaned table"""
    return ModelOrchestrator(config_path=None, config=config).execute(table)


# ============================================================================
# MAIN EXECUTION
# ============================================================================

def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='Antimicrobial-usage model orchestrator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
    Examples:
    python -m amu_models.orchestrator                              # Use Orchestrator.json
    python -m amu_models.orchestrator --config MyConfig.json       # Use custom configuration
    python -m amu_models.orchestrator --data cleaned_farms.csv     # Override the data file
            """
    )

    parser.add_argument(
        '--config',
        type=str,
        default='Orchestrator.json',
        help='Path to JSON configuration file (default: Orchestrator.json)'
    )
    parser.add_argument(
        '--data',
        type=str,
        default=None,
        help='Cleaned CSV to use instead of data_settings.data_file'
    )

    args = parser.parse_args(argv)

    print("=" * 80)
    print("AMU MODEL ORCHESTRATOR")
    print("=" * 80)
    print()

    try:
        orchestrator = ModelOrchestrator(config_path=args.config)
        if args.data:
            orchestrator.config['data_settings']['data_file'] = args.data
        exit_code = orchestrator.run()

        sys.exit(exit_code)

    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        print()
        print("Please create a configuration file or specify --config")
        sys.exit(1)

    except ConfigurationError as e:
        print(f"CONFIGURATION ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
