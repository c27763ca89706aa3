"""Score primitives — stateless numeric building blocks for all scores.

Losses are compared in the log10 domain so that losses of very different
magnitude do not dominate linearly:

- worker_score: log-loss delta between a held-out and a full loss
- stake_weighted_loss: stake-share-weighted mean of log10 losses
  (the log of a weighted geometric mean)
- uniqueness_weight: diminishing credit as more forecasters report
- forecast_task_score: blend of one-in and one-out forecast components
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from emissions_core.errors import DomainError, InvalidInputError


def worker_score(loss: float, held_out_loss: float) -> float:
    """Log-loss delta ``log10(held_out_loss) - log10(loss)``.

    Positive when withholding the participant raises the loss, i.e. the
    participant contributed positively.

    Raises:
        DomainError: If either loss is not a finite positive number.
    """
    for name, value in (("loss", loss), ("held_out_loss", held_out_loss)):
        if not math.isfinite(value) or value <= 0:
            raise DomainError(f"{name} must be a finite positive number, got {value}")
    return math.log10(held_out_loss) - math.log10(loss)


def stake_weighted_loss(stakes: Sequence[float], losses: Sequence[float]) -> float:
    """Stake-share-weighted sum of ``log10(loss_i)``.

    Invariant under scaling every stake by the same positive constant.

    Raises:
        InvalidInputError: On length mismatch, negative stake, non-positive
            total stake, or any non-positive loss.
    """
    if len(stakes) != len(losses):
        raise InvalidInputError(
            f"stakes and losses must have the same length ({len(stakes)} != {len(losses)})"
        )
    if len(stakes) == 0:
        raise InvalidInputError("at least one stake/loss pair is required")

    stake_arr = np.asarray(stakes, dtype=float)
    loss_arr = np.asarray(losses, dtype=float)

    if np.any(stake_arr < 0):
        raise InvalidInputError("stakes cannot be negative")
    total_stake = float(stake_arr.sum())
    if total_stake <= 0:
        raise InvalidInputError("total stake cannot be zero")
    if np.any(~np.isfinite(loss_arr)) or np.any(loss_arr <= 0):
        raise InvalidInputError("loss values must be greater than zero")

    return float(np.dot(stake_arr / total_stake, np.log10(loss_arr)))


def uniqueness_weight(num_forecasters: float) -> float:
    """Share of credit a forecaster keeps given how many forecasters reported.

    ``2 ** -(n - 1)``: a lone forecaster keeps full credit, each extra
    forecaster halves it. Continuous, non-increasing, and in (0, 1].
    """
    if num_forecasters <= 1:
        return 1.0
    return 1.0 / math.pow(2.0, num_forecasters - 1.0)


def forecast_task_score(
    one_in_score: float,
    one_out_score: float,
    uniqueness_factor: float,
) -> float:
    """Blend one-in and one-out forecast scores.

    ``f * one_in + (1 - f) * one_out``. With many forecasters the one-out
    (marginal contribution) component dominates.

    Raises:
        InvalidInputError: If ``uniqueness_factor`` is outside [0, 1].
    """
    if not 0.0 <= uniqueness_factor <= 1.0:
        raise InvalidInputError(
            f"uniqueness factor must be in [0, 1], got {uniqueness_factor}"
        )
    return uniqueness_factor * one_in_score + (1.0 - uniqueness_factor) * one_out_score
