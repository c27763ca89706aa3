"""Round scoring engine — runs all score generators for one (topic, block).

Flow:
1. Acquire the topic's lock (coefficient read-modify-write must not
   interleave between concurrent rounds of the same topic)
2. Open one keeper transaction
3. Reputer scores (coverage filter + consensus, coefficient updates)
4. Inference and forecast scores from the network bundle; when the caller
   has no resolved network bundle, the reputers' consensus bundle is used
   and categories without consensus are skipped instead of failing
5. Commit, or roll everything back and record the round as unscored

Failures are never retried here: the round is rolled back, logged, kept in
``unscored_rounds`` for operators, and the error re-raised.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from emissions_core.keeper import EmissionsKeeper
from emissions_core.models.bundle import ReputerValueBundles, ValueBundle
from emissions_core.models.score import Score
from emissions_core.scoring.consensus import ConsensusResult
from emissions_core.scoring.generators import (
    ScoringConfig,
    generate_forecast_scores,
    generate_inference_scores,
    run_reputer_round,
)

logger = logging.getLogger(__name__)


@dataclass
class RoundScores:
    """Everything a scored round produced."""

    topic_id: int
    block_number: int
    reputer_scores: list[Score] = field(default_factory=list)
    inference_scores: list[Score] = field(default_factory=list)
    forecast_scores: list[Score] = field(default_factory=list)
    consensus: ConsensusResult | None = None
    network_bundle: ValueBundle | None = None

    @property
    def total_scores(self) -> int:
        return len(self.reputer_scores) + len(self.inference_scores) + len(self.forecast_scores)


class ScoringEngine:
    """Scores rounds against a keeper, one topic at a time.

    Usage:
        engine = ScoringEngine(keeper)
        result = engine.score_round(topic_id, block, reputer_bundles, network_bundle)
    """

    def __init__(self, keeper: EmissionsKeeper, config: ScoringConfig | None = None) -> None:
        self.keeper = keeper
        self.config = config or ScoringConfig()
        self._topic_locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._unscored: dict[tuple[int, int], str] = {}

    def _topic_lock(self, topic_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._topic_locks.get(topic_id)
            if lock is None:
                lock = self._topic_locks[topic_id] = threading.Lock()
            return lock

    def score_round(
        self,
        topic_id: int,
        block: int,
        reputer_bundles: ReputerValueBundles,
        network_bundle: ValueBundle | None = None,
    ) -> RoundScores:
        """Score one round; all-or-nothing.

        Raises:
            ScoringError: If any part of the round fails. Nothing is
                persisted and the round is recorded in ``unscored_rounds``.
                Other exceptions are recorded the same way and re-raised.
        """
        with self._topic_lock(topic_id):
            try:
                with self.keeper.transaction():
                    result = self._score(topic_id, block, reputer_bundles, network_bundle)
            except Exception as exc:
                self._unscored[(topic_id, block)] = f"{type(exc).__name__}: {exc}"
                logger.error("Topic %d block %d left unscored: %s", topic_id, block, exc)
                raise

        self._unscored.pop((topic_id, block), None)
        logger.info(
            "Topic %d block %d scored: %d reputer, %d inference, %d forecast scores",
            topic_id, block,
            len(result.reputer_scores), len(result.inference_scores), len(result.forecast_scores),
        )
        return result

    def _score(
        self,
        topic_id: int,
        block: int,
        reputer_bundles: ReputerValueBundles,
        network_bundle: ValueBundle | None,
    ) -> RoundScores:
        reputer_output = run_reputer_round(
            self.keeper, topic_id, block, reputer_bundles, self.config,
        )

        # the consensus bundle only carries categories that reached consensus
        strict = network_bundle is not None
        if network_bundle is None:
            network_bundle = reputer_output.consensus.to_value_bundle(topic_id)
            logger.debug("Topic %d block %d: using consensus bundle as network bundle", topic_id, block)

        inference_scores = generate_inference_scores(
            self.keeper, topic_id, block, network_bundle, self.config, strict=strict,
        )
        forecast_scores = generate_forecast_scores(
            self.keeper, topic_id, block, network_bundle, self.config, strict=strict,
        )

        return RoundScores(
            topic_id=topic_id,
            block_number=block,
            reputer_scores=reputer_output.scores,
            inference_scores=inference_scores,
            forecast_scores=forecast_scores,
            consensus=reputer_output.consensus,
            network_bundle=network_bundle,
        )

    @property
    def unscored_rounds(self) -> dict[tuple[int, int], str]:
        """(topic, block) → reason, for rounds that failed and were rolled back."""
        return dict(self._unscored)
