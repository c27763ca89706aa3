"""Score generators — turn a round's loss bundles into persisted scores.

Run right after the network losses of a round are known:

- generate_reputer_scores: coverage filter + consensus over every reputer's
  bundle; persists updated listening coefficients and one score per
  participating reputer.
- generate_inference_scores: one score per inferer from the network
  bundle's one-out losses.
- generate_forecast_scores: one score per forecaster, blending its one-in
  and one-out components by the uniqueness weight.

Each generator computes everything before writing, and writes inside one
keeper transaction, so a failed round persists nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from emissions_core.errors import InvalidInputError
from emissions_core.keeper import EmissionsKeeper
from emissions_core.models.address import DEFAULT_PREFIX, Address
from emissions_core.models.bundle import (
    LossCategory,
    ReputerValueBundles,
    ValueBundle,
)
from emissions_core.models.score import ListeningCoefficient, Score
from emissions_core.scoring.consensus import (
    ConsensusAggregator,
    ConsensusConfig,
    ConsensusResult,
    ReputerReport,
)
from emissions_core.scoring.coverage import filter_bundle
from emissions_core.scoring.primitives import (
    forecast_task_score,
    uniqueness_weight,
    worker_score,
)

logger = logging.getLogger(__name__)


@dataclass
class ScoringConfig:
    """Configuration shared by the score generators."""

    address_prefix: str | None = DEFAULT_PREFIX  # None accepts any bech32 prefix
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)


@dataclass
class ReputerRoundOutput:
    """Scores written for a round plus the consensus that produced them."""

    scores: list[Score]
    consensus: ConsensusResult


def compute_reputer_round(
    keeper: EmissionsKeeper,
    topic_id: int,
    reported_losses: ReputerValueBundles,
    config: ScoringConfig | None = None,
) -> ConsensusResult:
    """Read stake, coefficients and roster, then run coverage + consensus.

    Performs no writes.

    Raises:
        IdentityError: If any reputer or worker address is malformed. All
            reputer addresses are checked before anything is read.
        InvalidInputError: If a reputer appears twice in the round.
        NotFoundError: If a reputer has no stake or the topic no roster.
    """
    config = config or ScoringConfig()
    bundles = reported_losses.reputer_value_bundles

    reputers = [Address.parse(b.reputer, config.address_prefix) for b in bundles]
    seen: set[Address] = set()
    for reputer in reputers:
        if reputer in seen:
            raise InvalidInputError(f"reputer {reputer} submitted more than one bundle")
        seen.add(reputer)

    roster = keeper.get_topic_workers(topic_id)

    reports: list[ReputerReport] = []
    for reputer, bundle in zip(reputers, bundles):
        stake = keeper.get_stake_on_topic(topic_id, reputer)
        coefficient = keeper.get_listening_coefficient(topic_id, reputer).coefficient
        coverage = filter_bundle(reputer, bundle.value_bundle, roster, config.address_prefix)
        reports.append(ReputerReport(coverage=coverage, stake=stake, coefficient=coefficient))

    return ConsensusAggregator(config.consensus).aggregate(reports)


def generate_reputer_scores(
    keeper: EmissionsKeeper,
    topic_id: int,
    block: int,
    reported_losses: ReputerValueBundles,
    config: ScoringConfig | None = None,
) -> list[Score]:
    """Score every participating reputer and persist its new coefficient.

    Reputers with no complete loss category get neither a score nor a
    coefficient update.

    Raises:
        ScoringError: Any failure; nothing from this round is persisted.
    """
    return run_reputer_round(keeper, topic_id, block, reported_losses, config).scores


def run_reputer_round(
    keeper: EmissionsKeeper,
    topic_id: int,
    block: int,
    reported_losses: ReputerValueBundles,
    config: ScoringConfig | None = None,
) -> ReputerRoundOutput:
    """Like ``generate_reputer_scores`` but also returns the consensus result."""
    result = compute_reputer_round(keeper, topic_id, reported_losses, config)

    new_scores = [
        Score(topic_id=topic_id, block_number=block, address=str(reputer), score=score)
        for reputer, score in result.scores.items()
    ]

    with keeper.transaction():
        for reputer, coefficient in result.coefficients.items():
            keeper.set_listening_coefficient(
                topic_id, reputer, ListeningCoefficient(coefficient=coefficient),
            )
        for score in new_scores:
            keeper.insert_reputer_score(topic_id, block, score)

    logger.info(
        "Topic %d block %d: scored %d reputers (%d excluded)",
        topic_id, block, len(new_scores), len(result.excluded),
    )
    return ReputerRoundOutput(scores=new_scores, consensus=result)


def _scalar(bundle: ValueBundle, category: LossCategory, strict: bool) -> float | None:
    value = bundle.scalar_value(category)
    if value is None and strict:
        raise InvalidInputError(f"network bundle has no {category.value} loss")
    return value


def generate_inference_scores(
    keeper: EmissionsKeeper,
    topic_id: int,
    block: int,
    network_losses: ValueBundle,
    config: ScoringConfig | None = None,
    strict: bool = True,
) -> list[Score]:
    """Score each inferer by ``worker_score(combined, one_out)``.

    Only workers present in the one-out inferer collection are scored; an
    absent worker gets no record this round. With ``strict=False`` a bundle
    without a combined loss scores nobody instead of failing.

    Raises:
        InvalidInputError: If ``strict`` and the combined loss is missing.
    """
    config = config or ScoringConfig()
    one_out = network_losses.values_for(LossCategory.ONE_OUT_INFERER, config.address_prefix)
    if not one_out:
        return []
    combined = _scalar(network_losses, LossCategory.COMBINED, strict)
    if combined is None:
        logger.info("Topic %d block %d: no combined loss, inferers not scored", topic_id, block)
        return []

    new_scores = [
        Score(
            topic_id=topic_id,
            block_number=block,
            address=str(worker),
            score=worker_score(combined, loss),
        )
        for worker, loss in one_out.items()
    ]

    with keeper.transaction():
        for score in new_scores:
            keeper.insert_worker_inference_score(topic_id, block, score)

    logger.info("Topic %d block %d: scored %d inferers", topic_id, block, len(new_scores))
    return new_scores


def generate_forecast_scores(
    keeper: EmissionsKeeper,
    topic_id: int,
    block: int,
    network_losses: ValueBundle,
    config: ScoringConfig | None = None,
    strict: bool = True,
) -> list[Score]:
    """Score each forecaster from its one-in and one-out losses.

    one-out component: ``worker_score(combined, one_out)``
    one-in component:  ``worker_score(one_in, naive)``
    final:             ``forecast_task_score(one_in, one_out, uniqueness_weight(n))``

    where n is the number of one-out forecasters. Components are paired by
    worker address.

    With ``strict=False`` (bundles that may lack whole categories, such as
    the reputers' consensus bundle) a missing scalar loss scores nobody and
    an unpaired one-in forecaster is skipped.

    Raises:
        InvalidInputError: If ``strict`` and a one-in forecaster has no
            one-out entry, or a required scalar loss is missing.
    """
    config = config or ScoringConfig()
    prefix = config.address_prefix
    one_out = network_losses.values_for(LossCategory.ONE_OUT_FORECASTER, prefix)
    one_in = network_losses.values_for(LossCategory.ONE_IN_FORECASTER, prefix)
    if not one_in:
        return []

    combined = _scalar(network_losses, LossCategory.COMBINED, strict)
    naive = _scalar(network_losses, LossCategory.NAIVE, strict)
    if combined is None or naive is None:
        logger.info(
            "Topic %d block %d: combined or naive loss missing, forecasters not scored",
            topic_id, block,
        )
        return []

    one_out_scores = {
        worker: worker_score(combined, loss) for worker, loss in one_out.items()
    }
    factor = uniqueness_weight(len(one_out_scores))

    new_scores: list[Score] = []
    for worker, loss in one_in.items():
        if worker not in one_out_scores:
            if strict:
                raise InvalidInputError(
                    f"forecaster {worker} has a one-in loss but no one-out loss"
                )
            logger.debug("Topic %d block %d: forecaster %s has no one-out loss, skipped",
                         topic_id, block, worker)
            continue
        one_in_score = worker_score(loss, naive)
        new_scores.append(Score(
            topic_id=topic_id,
            block_number=block,
            address=str(worker),
            score=forecast_task_score(one_in_score, one_out_scores[worker], factor),
        ))

    with keeper.transaction():
        for score in new_scores:
            keeper.insert_worker_forecast_score(topic_id, block, score)

    logger.info(
        "Topic %d block %d: scored %d forecasters (uniqueness %.4f)",
        topic_id, block, len(new_scores), factor,
    )
    return new_scores
