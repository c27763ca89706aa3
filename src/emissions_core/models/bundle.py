"""Value bundles — the losses a reputer (or the network) reports for one round.

A bundle holds two scalar losses (the network's combined loss and the naive
baseline loss) and three per-worker loss collections. The collections keep
the wire shape (a list of ``WorkerValue`` entries); scoring code reads them
through ``ValueBundle.values_for`` as a typed ``Address -> loss`` mapping.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from emissions_core.errors import InvalidInputError
from emissions_core.models.address import DEFAULT_PREFIX, Address


class LossCategory(str, Enum):
    """The loss categories carried by a value bundle."""

    COMBINED = "combined"
    NAIVE = "naive"
    ONE_OUT_INFERER = "one_out_inferer"
    ONE_OUT_FORECASTER = "one_out_forecaster"
    ONE_IN_FORECASTER = "one_in_forecaster"

    @property
    def per_worker(self) -> bool:
        return self in PER_WORKER_CATEGORIES


PER_WORKER_CATEGORIES = (
    LossCategory.ONE_OUT_INFERER,
    LossCategory.ONE_OUT_FORECASTER,
    LossCategory.ONE_IN_FORECASTER,
)

_CATEGORY_FIELDS = {
    LossCategory.ONE_OUT_INFERER: "one_out_inferer_values",
    LossCategory.ONE_OUT_FORECASTER: "one_out_forecaster_values",
    LossCategory.ONE_IN_FORECASTER: "one_in_forecaster_values",
}


class WorkerValue(BaseModel):
    """A single worker's loss within a per-worker collection."""

    worker: str = Field(description="Bech32 address of the worker")
    value: float = Field(description="Reported loss (must be > 0 to be scored)")


class ValueBundle(BaseModel):
    """One reputer's (or the network's) loss report for a topic and round."""

    topic_id: int = Field(default=0, description="Topic the losses were computed for")
    combined_value: float | None = Field(
        default=None,
        description="Loss of the network's combined inference",
    )
    naive_value: float | None = Field(
        default=None,
        description="Loss of the naive (no-forecast) network inference",
    )
    one_out_inferer_values: list[WorkerValue] = Field(
        default_factory=list,
        description="Network loss with each inferer's contribution withheld",
    )
    one_out_forecaster_values: list[WorkerValue] = Field(
        default_factory=list,
        description="Network loss with each forecaster's contribution withheld",
    )
    one_in_forecaster_values: list[WorkerValue] = Field(
        default_factory=list,
        description="Naive network loss with a single forecaster added",
    )

    def scalar_value(self, category: LossCategory) -> float | None:
        if category is LossCategory.COMBINED:
            return self.combined_value
        if category is LossCategory.NAIVE:
            return self.naive_value
        raise ValueError(f"{category.value} is a per-worker category")

    def entries_for(self, category: LossCategory) -> list[WorkerValue]:
        if not category.per_worker:
            raise ValueError(f"{category.value} is not a per-worker category")
        return getattr(self, _CATEGORY_FIELDS[category])

    def values_for(
        self,
        category: LossCategory,
        prefix: str | None = DEFAULT_PREFIX,
    ) -> dict[Address, float]:
        """Per-worker losses of a category keyed by parsed worker address.

        Raises:
            IdentityError: If a worker address is malformed.
            InvalidInputError: If a worker appears twice in the collection.
        """
        values: dict[Address, float] = {}
        for entry in self.entries_for(category):
            worker = Address.parse(entry.worker, prefix)
            if worker in values:
                raise InvalidInputError(
                    f"worker {entry.worker} reported twice in {category.value}"
                )
            values[worker] = entry.value
        return values


class ReputerValueBundle(BaseModel):
    """A value bundle attributed to the reputer that reported it."""

    reputer: str = Field(description="Bech32 address of the reputer")
    value_bundle: ValueBundle
    signature: bytes = Field(
        default=b"",
        description="Reputer's signature over the bundle (verified upstream)",
    )


class ReputerValueBundles(BaseModel):
    """All reputer reports for one (topic, round), in submission order."""

    reputer_value_bundles: list[ReputerValueBundle] = Field(default_factory=list)

