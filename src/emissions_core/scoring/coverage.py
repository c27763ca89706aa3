"""Coverage filter — only complete loss categories count toward consensus.

A reputer's per-worker category is trusted only if it covers every worker on
the topic's roster. Partial coverage drops the whole category, not just the
missing entries, so a reputer cannot cherry-pick a favorable subset.
Combined and naive losses have no roster requirement and count whenever
they are present. A category holding a loss that is not a finite positive
number is dropped as well.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field

from emissions_core.models.address import DEFAULT_PREFIX, Address
from emissions_core.models.bundle import (
    PER_WORKER_CATEGORIES,
    LossCategory,
    ValueBundle,
)

logger = logging.getLogger(__name__)

# (category, worker); worker is None for the scalar categories
LossKey = tuple[LossCategory, Address | None]

_CATEGORY_ORDER = {category: i for i, category in enumerate(LossCategory)}


def loss_key_order(key: LossKey) -> tuple[int, bool, str, bytes]:
    """Sort key giving loss keys a stable order (category, then worker)."""
    category, worker = key
    if worker is None:
        return (_CATEGORY_ORDER[category], False, "", b"")
    return (_CATEGORY_ORDER[category], True, worker.prefix, worker.payload)


@dataclass
class CoverageReport:
    """Which of a reputer's categories are usable, and their losses."""

    reputer: Address
    eligible: frozenset[LossCategory] = frozenset()
    excluded: frozenset[LossCategory] = frozenset()
    losses: dict[LossKey, float] = field(default_factory=dict)

    @property
    def has_eligible(self) -> bool:
        return bool(self.eligible)

    def losses_for(self, category: LossCategory) -> dict[LossKey, float]:
        return {k: v for k, v in self.losses.items() if k[0] is category}


def _valid_loss(value: float) -> bool:
    return math.isfinite(value) and value > 0


def filter_bundle(
    reputer: Address,
    bundle: ValueBundle,
    roster: Iterable[Address],
    prefix: str | None = DEFAULT_PREFIX,
) -> CoverageReport:
    """Keep the complete categories of one reputer's bundle.

    Args:
        reputer: The reporting reputer.
        bundle: Its reported value bundle.
        roster: Workers registered on the topic at round time.
        prefix: Address prefix used to parse worker addresses.

    Returns:
        CoverageReport with eligible categories and filtered losses. Entries
        for workers outside the roster are dropped. With an empty roster no
        per-worker category is eligible. A category with any non-finite or
        non-positive loss is excluded.
    """
    roster_set = frozenset(roster)
    eligible: set[LossCategory] = set()
    excluded: set[LossCategory] = set()
    losses: dict[LossKey, float] = {}

    for category in (LossCategory.COMBINED, LossCategory.NAIVE):
        value = bundle.scalar_value(category)
        if value is None:
            excluded.add(category)
            continue
        if not _valid_loss(value):
            logger.warning(
                "Reputer %s: %s loss %r is not a finite positive number, category excluded",
                reputer, category.value, value,
            )
            excluded.add(category)
            continue
        eligible.add(category)
        losses[(category, None)] = value

    for category in PER_WORKER_CATEGORIES:
        reported = bundle.values_for(category, prefix)

        unknown = set(reported) - roster_set
        if unknown:
            logger.debug(
                "Reputer %s: ignoring %d %s entries for workers off the roster",
                reputer, len(unknown), category.value,
            )

        missing = roster_set - set(reported)
        if not roster_set or missing:
            if missing:
                logger.debug(
                    "Reputer %s: %s misses %d of %d roster workers, category excluded",
                    reputer, category.value, len(missing), len(roster_set),
                )
            excluded.add(category)
            continue

        invalid = [w for w in roster_set if not _valid_loss(reported[w])]
        if invalid:
            logger.warning(
                "Reputer %s: %s has %d losses that are not finite positive numbers, "
                "category excluded",
                reputer, category.value, len(invalid),
            )
            excluded.add(category)
            continue

        eligible.add(category)
        for worker in sorted(roster_set):
            losses[(category, worker)] = reported[worker]

    return CoverageReport(
        reputer=reputer,
        eligible=frozenset(eligible),
        excluded=frozenset(excluded),
        losses=losses,
    )


def filter_bundles(
    bundles: Iterable[tuple[Address, ValueBundle]],
    roster: Iterable[Address],
    prefix: str | None = DEFAULT_PREFIX,
) -> list[CoverageReport]:
    """Apply ``filter_bundle`` to every (reputer, bundle) pair of a round."""
    roster_set = frozenset(roster)
    return [
        filter_bundle(reputer, bundle, roster_set, prefix)
        for reputer, bundle in bundles
    ]
