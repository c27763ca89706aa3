"""Scores and listening coefficients — the per-round outputs of scoring."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_LISTENING_COEFFICIENT = 1.0


class Score(BaseModel):
    """A participant's score for one topic at one block.

    Scores are append-only: once inserted for (topic, block, address) they
    are never replaced.
    """

    model_config = ConfigDict(frozen=True)

    topic_id: int = Field(description="Topic the score belongs to")
    block_number: int = Field(description="Block height of the scored round")
    address: str = Field(description="Bech32 address of the scored participant")
    score: float = Field(description="Score value (log-loss based)")


class ListeningCoefficient(BaseModel):
    """Per-(topic, reputer) reliability weight used in consensus."""

    coefficient: float = Field(
        default=DEFAULT_LISTENING_COEFFICIENT,
        ge=0.0,
        description="Reliability weight; 1.0 for a reputer seen for the first time",
    )
