"""Keeper — the ledger-facing collaborator the scoring engine reads and writes.

``EmissionsKeeper`` is the contract the engine needs from the surrounding
chain: stake and roster lookups, listening-coefficient read/write, and
append-only score inserts, all grouped into all-or-nothing transactions.

``InMemoryKeeper`` is a complete in-process implementation used by tests
and by tooling that replays rounds off-chain.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Protocol

from emissions_core.errors import DuplicateScoreError, NotFoundError
from emissions_core.models.address import Address
from emissions_core.models.score import ListeningCoefficient, Score

logger = logging.getLogger(__name__)

# (topic_id, block_number, address)
ScoreKey = tuple[int, int, str]


class EmissionsKeeper(Protocol):
    """Collaborator contract consumed by the score generators."""

    def get_stake_on_topic(self, topic_id: int, reputer: Address) -> float:
        """Reputer's stake on a topic. Raises NotFoundError if unregistered."""
        ...

    def get_listening_coefficient(self, topic_id: int, reputer: Address) -> ListeningCoefficient:
        """Stored coefficient, or the neutral default for a new reputer."""
        ...

    def set_listening_coefficient(
        self, topic_id: int, reputer: Address, coefficient: ListeningCoefficient,
    ) -> None:
        ...

    def get_topic_workers(self, topic_id: int) -> frozenset[Address]:
        """Workers registered on a topic. Raises NotFoundError for an unknown topic."""
        ...

    def insert_reputer_score(self, topic_id: int, block: int, score: Score) -> None:
        ...

    def insert_worker_inference_score(self, topic_id: int, block: int, score: Score) -> None:
        ...

    def insert_worker_forecast_score(self, topic_id: int, block: int, score: Score) -> None:
        ...

    def transaction(self) -> AbstractContextManager[None]:
        """Group writes: all of them apply, or none if the block raises."""
        ...


class InMemoryKeeper:
    """Dict-backed keeper with append-only scores and snapshot rollback.

    Transactions nest: an inner failure rolls back to the inner snapshot,
    and the exception still unwinds any outer transaction.
    """

    def __init__(self) -> None:
        self._stakes: dict[tuple[int, Address], float] = {}
        self._coefficients: dict[tuple[int, Address], ListeningCoefficient] = {}
        self._workers: dict[int, frozenset[Address]] = {}
        self._reputer_scores: dict[ScoreKey, Score] = {}
        self._inference_scores: dict[ScoreKey, Score] = {}
        self._forecast_scores: dict[ScoreKey, Score] = {}
        self._lock = threading.RLock()

    # ── Registration (owned by the surrounding chain) ───────────────

    def set_stake(self, topic_id: int, reputer: Address, stake: float) -> None:
        self._stakes[(topic_id, reputer)] = float(stake)

    def set_topic_workers(self, topic_id: int, workers: Iterable[Address]) -> None:
        self._workers[topic_id] = frozenset(workers)

    # ── Collaborator contract ───────────────────────────────────────

    def get_stake_on_topic(self, topic_id: int, reputer: Address) -> float:
        try:
            return self._stakes[(topic_id, reputer)]
        except KeyError:
            raise NotFoundError(f"no stake for reputer {reputer} on topic {topic_id}") from None

    def get_listening_coefficient(self, topic_id: int, reputer: Address) -> ListeningCoefficient:
        return self._coefficients.get((topic_id, reputer), ListeningCoefficient())

    def set_listening_coefficient(
        self, topic_id: int, reputer: Address, coefficient: ListeningCoefficient,
    ) -> None:
        self._coefficients[(topic_id, reputer)] = coefficient

    def get_topic_workers(self, topic_id: int) -> frozenset[Address]:
        try:
            return self._workers[topic_id]
        except KeyError:
            raise NotFoundError(f"no worker roster for topic {topic_id}") from None

    def insert_reputer_score(self, topic_id: int, block: int, score: Score) -> None:
        self._insert(self._reputer_scores, "reputer", topic_id, block, score)

    def insert_worker_inference_score(self, topic_id: int, block: int, score: Score) -> None:
        self._insert(self._inference_scores, "inference", topic_id, block, score)

    def insert_worker_forecast_score(self, topic_id: int, block: int, score: Score) -> None:
        self._insert(self._forecast_scores, "forecast", topic_id, block, score)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                logger.debug("Keeper transaction rolled back")
                raise

    # ── Queries ─────────────────────────────────────────────────────

    def get_reputer_scores(self, topic_id: int, block: int) -> list[Score]:
        return self._scores_at(self._reputer_scores, topic_id, block)

    def get_worker_inference_scores(self, topic_id: int, block: int) -> list[Score]:
        return self._scores_at(self._inference_scores, topic_id, block)

    def get_worker_forecast_scores(self, topic_id: int, block: int) -> list[Score]:
        return self._scores_at(self._forecast_scores, topic_id, block)

    # ── Internals ───────────────────────────────────────────────────

    @staticmethod
    def _insert(
        table: dict[ScoreKey, Score], kind: str, topic_id: int, block: int, score: Score,
    ) -> None:
        key = (topic_id, block, score.address)
        if key in table:
            raise DuplicateScoreError(
                f"{kind} score already recorded for {score.address} "
                f"on topic {topic_id} at block {block}"
            )
        table[key] = score

    @staticmethod
    def _scores_at(table: dict[ScoreKey, Score], topic_id: int, block: int) -> list[Score]:
        return [s for (t, b, _), s in table.items() if t == topic_id and b == block]

    def _snapshot(self) -> dict[str, dict]:
        return {
            "_coefficients": dict(self._coefficients),
            "_reputer_scores": dict(self._reputer_scores),
            "_inference_scores": dict(self._inference_scores),
            "_forecast_scores": dict(self._forecast_scores),
            "_stakes": dict(self._stakes),
            "_workers": dict(self._workers),
        }

    def _restore(self, snapshot: dict[str, dict]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)
