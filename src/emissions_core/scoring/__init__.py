"""Scoring pipeline — primitives, coverage filter, consensus and generators."""

from emissions_core.scoring.consensus import (
    ConsensusAggregator,
    ConsensusConfig,
    ConsensusResult,
    ReputerReport,
    aggregate,
)
from emissions_core.scoring.coverage import (
    CoverageReport,
    LossKey,
    filter_bundle,
    filter_bundles,
)
from emissions_core.scoring.generators import (
    ReputerRoundOutput,
    ScoringConfig,
    compute_reputer_round,
    generate_forecast_scores,
    generate_inference_scores,
    generate_reputer_scores,
    run_reputer_round,
)
from emissions_core.scoring.primitives import (
    forecast_task_score,
    stake_weighted_loss,
    uniqueness_weight,
    worker_score,
)

__all__ = [
    "ConsensusAggregator",
    "ConsensusConfig",
    "ConsensusResult",
    "CoverageReport",
    "LossKey",
    "ReputerReport",
    "ReputerRoundOutput",
    "ScoringConfig",
    "aggregate",
    "compute_reputer_round",
    "filter_bundle",
    "filter_bundles",
    "forecast_task_score",
    "generate_forecast_scores",
    "generate_inference_scores",
    "generate_reputer_scores",
    "run_reputer_round",
    "stake_weighted_loss",
    "uniqueness_weight",
    "worker_score",
]
