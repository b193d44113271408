from .models import Particle, HistoryEntry
from .config import Config, ResampleMode, HistoryMode, load_config
from .exceptions import (
    SMCError,
    MissingHistoryError,
    InvariantViolationError,
    DegenerateWeightsError,
    PopulationCapWarning,
)
from .rng import RandomSource
from .moves import MoveSet, FunctionMoveSet
from .resampling import Resampler, sample_counts
from .adaptive import AdaptivePopulationController, AdaptiveResult
from .history import HistoryStore
from .lineage import LineageRecorder, GraphLineage
from .diagnostics import DiagnosticsRecorder
from .sampler import Sampler, SamplerState
from .utils import compute_ess, logsumexp, setup_logging

__all__ = [
    # Models
    "Particle",
    "HistoryEntry",
    # Config
    "Config",
    "ResampleMode",
    "HistoryMode",
    "load_config",
    # Errors
    "SMCError",
    "MissingHistoryError",
    "InvariantViolationError",
    "DegenerateWeightsError",
    "PopulationCapWarning",
    # Moves and randomness
    "RandomSource",
    "MoveSet",
    "FunctionMoveSet",
    # Resampling
    "Resampler",
    "sample_counts",
    "AdaptivePopulationController",
    "AdaptiveResult",
    # Records
    "HistoryStore",
    "LineageRecorder",
    "GraphLineage",
    "DiagnosticsRecorder",
    # Sampler
    "Sampler",
    "SamplerState",
    # Utils
    "compute_ess",
    "logsumexp",
    "setup_logging",
]
