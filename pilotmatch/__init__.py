from .config import SimulationConfig, calibrate_intercept
from .dgp import Dataset, generate_data
from .distances import CovariateMahalanobis, DistanceSpec, JointDistance, ScoreDistance, match_dataset
from .matching import Matching, optimal_match
from .scores import FittedScore, PilotSplit, fit_prognostic, fit_propensity, pilot_split
from .sensitivity import sensitivity_bound, sensitivity_curve, sensitivity_value
from .estimators import (
    MahalanobisMatching, MatchingResult, OracleMatching, PrognosticMatching, PropensityScoreMatching,
    METHODS, att_estimate, make_estimator,
)
from .simulation import GridSpec, SimulationResult, run_cell_to_file, run_grid, run_replication, simulate
from ._exceptions import ConfigurationError, DegenerateSample, InfeasibleMatch, MatchingError, ModelFitFailure

__version__ = "0.1.0"

__all__ = [
    "SimulationConfig", "calibrate_intercept",
    "Dataset", "generate_data",
    "DistanceSpec", "CovariateMahalanobis", "ScoreDistance", "JointDistance", "match_dataset",
    "Matching", "optimal_match",
    "FittedScore", "PilotSplit", "fit_propensity", "fit_prognostic", "pilot_split",
    "sensitivity_bound", "sensitivity_value", "sensitivity_curve",
    "PropensityScoreMatching", "MahalanobisMatching", "PrognosticMatching", "OracleMatching",
    "MatchingResult", "METHODS", "att_estimate", "make_estimator",
    "GridSpec", "SimulationResult", "simulate", "run_grid", "run_replication", "run_cell_to_file",
    "MatchingError", "InfeasibleMatch", "DegenerateSample", "ModelFitFailure", "ConfigurationError",
]
