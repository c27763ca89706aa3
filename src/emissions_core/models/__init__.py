"""Data models for the scoring engine — addresses, value bundles, scores."""

from emissions_core.models.address import DEFAULT_PREFIX, Address
from emissions_core.models.bundle import (
    PER_WORKER_CATEGORIES,
    LossCategory,
    ReputerValueBundle,
    ReputerValueBundles,
    ValueBundle,
    WorkerValue,
)
from emissions_core.models.score import (
    DEFAULT_LISTENING_COEFFICIENT,
    ListeningCoefficient,
    Score,
)

__all__ = [
    "Address",
    "DEFAULT_LISTENING_COEFFICIENT",
    "DEFAULT_PREFIX",
    "ListeningCoefficient",
    "LossCategory",
    "PER_WORKER_CATEGORIES",
    "ReputerValueBundle",
    "ReputerValueBundles",
    "Score",
    "ValueBundle",
    "WorkerValue",
]
