from .aspic import AspicInput, AspicResult, read_aspic, read_aspic_result, write_aspic
from .backends import AVAILABLE_BACKENDS, get_backend
from .data import ModelData, Observations, default_guesses
from .diagnostics import PragerStatistics, prager_statistics
from .errors import (
    CovarianceFailure,
    DerivedQuantityDomainError,
    FormatError,
    OptimizationFailure,
)
from .model import ModelSpecification
from .objective import EngineConfig, LaplaceObjective, ObjectiveAdapter
from .params import ParameterSpec, ParameterVector, ParamsView, ParamView, Phase
from .phases import PhasedOptimizationController, build_phases
from .refpoints import production, rate_from_yield, reference_points, yield_from_rate
from .results import (
    Converged,
    FitResult,
    LatentTrajectory,
    OptimizerFailed,
    PhaseStatus,
)
from .simulate import simulate
from .uncertainty import delta_method

__all__ = [
    "AVAILABLE_BACKENDS",
    "AspicInput",
    "AspicResult",
    "Converged",
    "CovarianceFailure",
    "DerivedQuantityDomainError",
    "EngineConfig",
    "FitResult",
    "FormatError",
    "LaplaceObjective",
    "LatentTrajectory",
    "ModelData",
    "ModelSpecification",
    "ObjectiveAdapter",
    "Observations",
    "OptimizationFailure",
    "OptimizerFailed",
    "ParamView",
    "ParameterSpec",
    "ParameterVector",
    "ParamsView",
    "Phase",
    "PhaseStatus",
    "PhasedOptimizationController",
    "PragerStatistics",
    "build_phases",
    "default_guesses",
    "delta_method",
    "get_backend",
    "prager_statistics",
    "production",
    "rate_from_yield",
    "read_aspic",
    "read_aspic_result",
    "reference_points",
    "simulate",
    "write_aspic",
    "yield_from_rate",
]
