"""Consensus aggregation of reputer losses and listening-coefficient updates.

Every loss key (a scalar category, or a (category, worker) pair) gets a
consensus estimate: the stake-weighted log10 loss over the reputers that
reported it, where each reputer's weight is ``stake * listening coefficient``.

A reputer's deviation is the RMS of its log10 deltas against that consensus,
over the keys it reported. Deviation drives both outputs. The score is in
the same log10 units as worker scores: 0 for perfect agreement, more
negative the further a reputer strays:

    score_i     = -deviation_i                           log-loss delta, <= 0
    agreement_i = tolerance / (deviation_i + tolerance)      in (0, 1]

Coefficient update (one pass; repeated up to ``max_passes`` times, stopping
early once the largest change falls below ``convergence_threshold``):

    c_i <- (1 - damping) * c_i + damping * agreement_i / max(agreement)
    c_i <- clamp(c_i, min_coefficient, max_coefficient)
    c   <- c * max_coefficient / max(c)

so the most reliable reputer of a round sits at ``max_coefficient``, and
reputers that keep diverging lose relative weight round after round.
Reputers with no eligible category, or with a loss that is not a finite
positive number, take no part and get no update.

The aggregator is pure: prior coefficients come in through ``ReputerReport``
and updated ones come back in ``ConsensusResult``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

import numpy as np

from emissions_core.errors import InvalidInputError
from emissions_core.models.address import Address
from emissions_core.models.bundle import LossCategory, ValueBundle, WorkerValue
from emissions_core.scoring.coverage import CoverageReport, LossKey, loss_key_order
from emissions_core.scoring.primitives import stake_weighted_loss

logger = logging.getLogger(__name__)


@dataclass
class ConsensusConfig:
    """Tuning parameters of the coefficient update rule."""

    max_passes: int = 3                 # Update passes per round
    damping: float = 0.25               # Step toward the agreement target per pass
    tolerance: float = 0.01             # Deviation floor in score / agreement
    min_coefficient: float = 0.0
    max_coefficient: float = 1.0
    convergence_threshold: float = 1e-6  # Stop when max |change| drops below

    def __post_init__(self) -> None:
        if self.max_passes < 0:
            raise ValueError("max_passes cannot be negative")
        if not 0.0 <= self.damping <= 1.0:
            raise ValueError("damping must be in [0, 1]")
        if self.tolerance <= 0:
            raise ValueError("tolerance must be positive")
        if not 0.0 <= self.min_coefficient < self.max_coefficient:
            raise ValueError("coefficient range must satisfy 0 <= min < max")


@dataclass
class ReputerReport:
    """One reputer's round input: filtered losses plus its current state."""

    coverage: CoverageReport
    stake: float
    coefficient: float

    @property
    def reputer(self) -> Address:
        return self.coverage.reputer


@dataclass
class ConsensusResult:
    """Consensus losses, reputer scores and updated coefficients for a round."""

    log_consensus: dict[LossKey, float] = field(default_factory=dict)
    scores: dict[Address, float] = field(default_factory=dict)
    coefficients: dict[Address, float] = field(default_factory=dict)
    deviations: dict[Address, float] = field(default_factory=dict)
    excluded: list[Address] = field(default_factory=list)
    passes: int = 0

    @property
    def consensus_losses(self) -> dict[LossKey, float]:
        """Consensus estimate per loss key, back in the loss domain."""
        return {key: math.pow(10.0, value) for key, value in self.log_consensus.items()}

    @property
    def participants(self) -> list[Address]:
        return list(self.scores)

    def to_value_bundle(self, topic_id: int = 0) -> ValueBundle:
        """Rebuild a value bundle holding the consensus losses."""
        losses = self.consensus_losses
        per_worker: dict[LossCategory, list[WorkerValue]] = {}
        for (category, worker), value in sorted(
            losses.items(), key=lambda item: loss_key_order(item[0]),
        ):
            if worker is not None:
                per_worker.setdefault(category, []).append(
                    WorkerValue(worker=str(worker), value=value)
                )
        return ValueBundle(
            topic_id=topic_id,
            combined_value=losses.get((LossCategory.COMBINED, None)),
            naive_value=losses.get((LossCategory.NAIVE, None)),
            one_out_inferer_values=per_worker.get(LossCategory.ONE_OUT_INFERER, []),
            one_out_forecaster_values=per_worker.get(LossCategory.ONE_OUT_FORECASTER, []),
            one_in_forecaster_values=per_worker.get(LossCategory.ONE_IN_FORECASTER, []),
        )


def _valid_losses(report: ReputerReport) -> bool:
    return all(math.isfinite(loss) and loss > 0 for loss in report.coverage.losses.values())


class ConsensusAggregator:
    """Computes consensus losses and coefficient updates for one round.

    Usage:
        aggregator = ConsensusAggregator(ConsensusConfig(max_passes=5))
        result = aggregator.aggregate(reports)
    """

    def __init__(self, config: ConsensusConfig | None = None) -> None:
        self.config = config or ConsensusConfig()

    def aggregate(self, reports: list[ReputerReport]) -> ConsensusResult:
        """Aggregate all reputer reports of a round.

        Raises:
            InvalidInputError: If participating stake is negative or sums to zero.
        """
        participants: list[ReputerReport] = []
        excluded: list[Address] = []
        for report in reports:
            if not report.coverage.has_eligible:
                logger.info(
                    "Reputer %s has no complete loss category, excluded from consensus",
                    report.reputer,
                )
                excluded.append(report.reputer)
            elif not _valid_losses(report):
                logger.warning(
                    "Reputer %s reported a loss that is not a finite positive number, "
                    "excluded from consensus",
                    report.reputer,
                )
                excluded.append(report.reputer)
            else:
                participants.append(report)

        if not participants:
            return ConsensusResult(excluded=excluded)

        stakes = np.array([r.stake for r in participants], dtype=float)
        if np.any(stakes < 0):
            raise InvalidInputError("reputer stake cannot be negative")
        if stakes.sum() <= 0:
            raise InvalidInputError("total stake of participating reputers cannot be zero")

        keys = sorted(
            {key for r in participants for key in r.coverage.losses},
            key=loss_key_order,
        )
        column = {key: j for j, key in enumerate(keys)}

        losses = np.full((len(participants), len(keys)), np.nan)
        for i, report in enumerate(participants):
            for key, loss in report.coverage.losses.items():
                losses[i, column[key]] = loss
        reported = ~np.isnan(losses)
        log_losses = np.where(reported, np.log10(np.where(reported, losses, 1.0)), 0.0)

        cfg = self.config
        coefficients = np.clip(
            np.array([r.coefficient for r in participants], dtype=float),
            cfg.min_coefficient,
            cfg.max_coefficient,
        )

        passes = 0
        for _ in range(cfg.max_passes):
            log_consensus = self._consensus(losses, reported, stakes, coefficients)
            deviations = self._deviations(log_losses, reported, log_consensus)
            agreement = cfg.tolerance / (deviations + cfg.tolerance)

            updated = (1.0 - cfg.damping) * coefficients + cfg.damping * (agreement / agreement.max())
            updated = np.clip(updated, cfg.min_coefficient, cfg.max_coefficient)
            top = updated.max()
            if top > 0:
                updated = updated * (cfg.max_coefficient / top)

            change = float(np.abs(updated - coefficients).max())
            coefficients = updated
            passes += 1
            if change < cfg.convergence_threshold:
                break

        log_consensus = self._consensus(losses, reported, stakes, coefficients)
        deviations = self._deviations(log_losses, reported, log_consensus)
        scores = 0.0 - deviations

        logger.debug(
            "Consensus over %d reputers and %d loss keys after %d passes",
            len(participants), len(keys), passes,
        )

        return ConsensusResult(
            log_consensus={key: float(log_consensus[j]) for j, key in enumerate(keys)},
            scores={r.reputer: float(scores[i]) for i, r in enumerate(participants)},
            coefficients={r.reputer: float(coefficients[i]) for i, r in enumerate(participants)},
            deviations={r.reputer: float(deviations[i]) for i, r in enumerate(participants)},
            excluded=excluded,
            passes=passes,
        )

    @staticmethod
    def _consensus(
        losses: np.ndarray,
        reported: np.ndarray,
        stakes: np.ndarray,
        coefficients: np.ndarray,
    ) -> np.ndarray:
        """Log10 consensus loss per key, weighted by stake * coefficient.

        Falls back to stake, then to equal weights, when the reporters of a
        key carry no weight.
        """
        out = np.empty(losses.shape[1])
        for j in range(losses.shape[1]):
            rows = reported[:, j]
            weights = stakes[rows] * coefficients[rows]
            if weights.sum() <= 0:
                weights = stakes[rows]
            if weights.sum() <= 0:
                weights = np.ones(int(rows.sum()))
            out[j] = stake_weighted_loss(weights, losses[rows, j])
        return out

    @staticmethod
    def _deviations(
        log_losses: np.ndarray,
        reported: np.ndarray,
        log_consensus: np.ndarray,
    ) -> np.ndarray:
        """RMS log10 distance of each reputer to consensus over its own keys."""
        deltas = np.where(reported, log_losses - log_consensus[np.newaxis, :], 0.0)
        counts = reported.sum(axis=1)
        return np.sqrt((deltas ** 2).sum(axis=1) / counts)


def aggregate(
    reports: list[ReputerReport],
    config: ConsensusConfig | None = None,
) -> ConsensusResult:
    """Module-level shortcut for ``ConsensusAggregator(config).aggregate``."""
    return ConsensusAggregator(config).aggregate(reports)
