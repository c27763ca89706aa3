"""Tests for the reputer, inference and forecast score generators."""

import math

import pytest

from emissions_core.errors import (
    DomainError,
    DuplicateScoreError,
    IdentityError,
    InvalidInputError,
    NotFoundError,
)
from emissions_core.keeper import InMemoryKeeper
from emissions_core.models import (
    Address,
    ListeningCoefficient,
    LossCategory,
    ReputerValueBundle,
    ReputerValueBundles,
    ValueBundle,
    WorkerValue,
)
from emissions_core.scoring.generators import (
    ScoringConfig,
    generate_forecast_scores,
    generate_inference_scores,
    generate_reputer_scores,
    run_reputer_round,
)
from emissions_core.scoring.primitives import (
    forecast_task_score,
    uniqueness_weight,
    worker_score,
)

TOPIC = 1
BLOCK = 100

R1, R2, R3 = (Address.from_bytes(bytes([n]) * 20) for n in (1, 2, 3))
W1, W2 = (Address.from_bytes(bytes([n]) * 20) for n in (101, 102))


def values(losses: dict[Address, float]) -> list[WorkerValue]:
    return [WorkerValue(worker=str(w), value=v) for w, v in losses.items()]


def bundle(scale: float = 1.0, **overrides) -> ValueBundle:
    fields = dict(
        topic_id=TOPIC,
        combined_value=10.0 * scale,
        naive_value=20.0 * scale,
        one_out_inferer_values=values({W1: 11.0 * scale, W2: 12.0 * scale}),
        one_out_forecaster_values=values({W1: 13.0 * scale, W2: 14.0 * scale}),
        one_in_forecaster_values=values({W1: 15.0 * scale, W2: 16.0 * scale}),
    )
    fields.update(overrides)
    return ValueBundle(**fields)


def round_bundles(*entries: tuple[Address | str, ValueBundle]) -> ReputerValueBundles:
    return ReputerValueBundles(reputer_value_bundles=[
        ReputerValueBundle(reputer=str(r), value_bundle=b) for r, b in entries
    ])


def make_keeper() -> InMemoryKeeper:
    keeper = InMemoryKeeper()
    keeper.set_topic_workers(TOPIC, [W1, W2])
    for reputer, stake in ((R1, 100), (R2, 300), (R3, 200)):
        keeper.set_stake(TOPIC, reputer, stake)
    return keeper


class TestReputerScores:
    def test_scores_and_coefficients_persisted(self):
        keeper = make_keeper()
        bundles = round_bundles((R1, bundle()), (R2, bundle()), (R3, bundle(scale=50.0)))
        scores = generate_reputer_scores(keeper, TOPIC, BLOCK, bundles)

        assert [s.address for s in scores] == [str(R1), str(R2), str(R3)]
        assert all(s.topic_id == TOPIC and s.block_number == BLOCK for s in scores)
        assert keeper.get_reputer_scores(TOPIC, BLOCK) == scores

        by_address = {s.address: s.score for s in scores}
        assert by_address[str(R3)] < by_address[str(R1)]
        assert keeper.get_listening_coefficient(TOPIC, R1).coefficient == pytest.approx(1.0)
        assert keeper.get_listening_coefficient(TOPIC, R3).coefficient < 1.0

    def test_incomplete_category_still_scores_scalars(self):
        """Roster {W1, W2}; R1 reports one-out-inferer for W1 only."""
        keeper = make_keeper()
        partial = bundle(one_out_inferer_values=values({W1: 11.0}))
        output = run_reputer_round(keeper, TOPIC, BLOCK, round_bundles((R1, partial), (R2, bundle())))

        assert {s.address for s in output.scores} == {str(R1), str(R2)}
        # the W1 inferer consensus comes from R2 alone
        assert output.consensus.consensus_losses[(LossCategory.ONE_OUT_INFERER, W1)] == pytest.approx(11.0)

    def test_excluded_reputer_keeps_coefficient(self):
        keeper = make_keeper()
        prior = ListeningCoefficient(coefficient=0.42)
        keeper.set_listening_coefficient(TOPIC, R3, prior)
        silent = ValueBundle(one_out_inferer_values=values({W1: 11.0}))

        scores = generate_reputer_scores(
            keeper, TOPIC, BLOCK, round_bundles((R1, bundle()), (R3, silent)),
        )

        assert [s.address for s in scores] == [str(R1)]
        after = keeper.get_listening_coefficient(TOPIC, R3)
        assert after == prior
        assert after.coefficient == 0.42

    def test_invalid_loss_excludes_only_that_reputer(self):
        keeper = make_keeper()
        prior = ListeningCoefficient(coefficient=0.42)
        keeper.set_listening_coefficient(TOPIC, R2, prior)
        bundles = round_bundles(
            (R1, ValueBundle(combined_value=10.0)), (R2, ValueBundle(combined_value=0.0)),
        )

        output = run_reputer_round(keeper, TOPIC, BLOCK, bundles)

        assert [s.address for s in output.scores] == [str(R1)]
        assert output.scores[0].score == pytest.approx(0.0)
        assert output.consensus.excluded == [R2]
        assert keeper.get_listening_coefficient(TOPIC, R2) == prior

    def test_invalid_category_drops_only_that_category(self):
        keeper = make_keeper()
        bundles = round_bundles((R1, bundle()), (R2, bundle(combined_value=math.nan)))
        output = run_reputer_round(keeper, TOPIC, BLOCK, bundles)

        assert {s.address for s in output.scores} == {str(R1), str(R2)}
        assert output.consensus.consensus_losses[(LossCategory.COMBINED, None)] == pytest.approx(10.0)

    def test_identical_inputs_identical_scores(self):
        bundles = round_bundles((R1, bundle()), (R2, bundle(scale=1.3)), (R3, bundle(scale=0.7)))
        first = generate_reputer_scores(make_keeper(), TOPIC, BLOCK, bundles)
        second = generate_reputer_scores(make_keeper(), TOPIC, BLOCK, bundles)
        assert first == second

    def test_second_persist_fails_without_overwrite(self):
        keeper = make_keeper()
        bundles = round_bundles((R1, bundle()), (R3, bundle(scale=3.0)))
        first = generate_reputer_scores(keeper, TOPIC, BLOCK, bundles)
        coefficient = keeper.get_listening_coefficient(TOPIC, R3)

        with pytest.raises(DuplicateScoreError):
            generate_reputer_scores(keeper, TOPIC, BLOCK, bundles)

        assert keeper.get_reputer_scores(TOPIC, BLOCK) == first
        assert keeper.get_listening_coefficient(TOPIC, R3) == coefficient

    def test_malformed_reputer_fails_before_anything_persists(self):
        keeper = make_keeper()
        bundles = round_bundles((R1, bundle()), ("allo1-not-bech32", bundle()))
        with pytest.raises(IdentityError):
            generate_reputer_scores(keeper, TOPIC, BLOCK, bundles)
        assert keeper.get_reputer_scores(TOPIC, BLOCK) == []

    def test_malformed_worker_address(self):
        keeper = make_keeper()
        bad = bundle(one_in_forecaster_values=[WorkerValue(worker="w1", value=1.0)])
        with pytest.raises(IdentityError):
            generate_reputer_scores(keeper, TOPIC, BLOCK, round_bundles((R1, bad)))

    def test_duplicate_reputer(self):
        keeper = make_keeper()
        with pytest.raises(InvalidInputError):
            generate_reputer_scores(
                keeper, TOPIC, BLOCK, round_bundles((R1, bundle()), (R1, bundle())),
            )

    def test_unstaked_reputer(self):
        keeper = make_keeper()
        stranger = Address.from_bytes(bytes([77]) * 20)
        with pytest.raises(NotFoundError):
            generate_reputer_scores(keeper, TOPIC, BLOCK, round_bundles((stranger, bundle())))

    def test_zero_total_stake_aborts_round(self):
        keeper = make_keeper()
        keeper.set_stake(TOPIC, R1, 0)
        with pytest.raises(InvalidInputError):
            generate_reputer_scores(keeper, TOPIC, BLOCK, round_bundles((R1, bundle())))
        assert keeper.get_reputer_scores(TOPIC, BLOCK) == []
        assert keeper.get_listening_coefficient(TOPIC, R1).coefficient == 1.0

    def test_custom_prefix(self):
        keeper = InMemoryKeeper()
        reputer = Address.from_bytes(bytes([1]) * 20, "cosmos")
        keeper.set_topic_workers(TOPIC, [])
        keeper.set_stake(TOPIC, reputer, 10)
        config = ScoringConfig(address_prefix="cosmos")
        scores = generate_reputer_scores(
            keeper, TOPIC, BLOCK,
            round_bundles((reputer, ValueBundle(combined_value=1.0))),
            config,
        )
        assert scores[0].address.startswith("cosmos1")


class TestInferenceScores:
    def test_scores_from_one_out_losses(self):
        keeper = make_keeper()
        network = ValueBundle(
            combined_value=100.0,
            one_out_inferer_values=values({W1: 50.0, W2: 200.0}),
        )
        scores = generate_inference_scores(keeper, TOPIC, BLOCK, network)

        by_address = {s.address: s.score for s in scores}
        assert by_address[str(W1)] == pytest.approx(math.log10(50) - math.log10(100))
        assert by_address[str(W2)] == pytest.approx(math.log10(2))
        assert keeper.get_worker_inference_scores(TOPIC, BLOCK) == scores

    def test_absent_worker_gets_no_record(self):
        keeper = make_keeper()
        network = ValueBundle(combined_value=100.0, one_out_inferer_values=values({W1: 50.0}))
        scores = generate_inference_scores(keeper, TOPIC, BLOCK, network)
        assert [s.address for s in scores] == [str(W1)]

    def test_empty_collection(self):
        keeper = make_keeper()
        assert generate_inference_scores(keeper, TOPIC, BLOCK, ValueBundle()) == []

    def test_missing_combined(self):
        network = ValueBundle(one_out_inferer_values=values({W1: 50.0}))
        with pytest.raises(InvalidInputError):
            generate_inference_scores(make_keeper(), TOPIC, BLOCK, network)

    def test_missing_combined_not_strict(self):
        keeper = make_keeper()
        network = ValueBundle(one_out_inferer_values=values({W1: 50.0}))
        assert generate_inference_scores(keeper, TOPIC, BLOCK, network, strict=False) == []
        assert keeper.get_worker_inference_scores(TOPIC, BLOCK) == []

    def test_bad_loss_persists_nothing(self):
        keeper = make_keeper()
        network = ValueBundle(combined_value=100.0, one_out_inferer_values=values({W1: 50.0, W2: 0.0}))
        with pytest.raises(DomainError):
            generate_inference_scores(keeper, TOPIC, BLOCK, network)
        assert keeper.get_worker_inference_scores(TOPIC, BLOCK) == []

    def test_duplicate_round(self):
        keeper = make_keeper()
        network = ValueBundle(combined_value=100.0, one_out_inferer_values=values({W1: 50.0}))
        generate_inference_scores(keeper, TOPIC, BLOCK, network)
        with pytest.raises(DuplicateScoreError):
            generate_inference_scores(keeper, TOPIC, BLOCK, network)


class TestForecastScores:
    def network(self, **overrides) -> ValueBundle:
        fields = dict(
            combined_value=100.0,
            naive_value=200.0,
            one_out_forecaster_values=values({W1: 150.0, W2: 80.0}),
            one_in_forecaster_values=values({W1: 120.0, W2: 250.0}),
        )
        fields.update(overrides)
        return ValueBundle(**fields)

    def expected(self, one_in: float, one_out: float, n: int) -> float:
        return forecast_task_score(
            worker_score(one_in, 200.0), worker_score(100.0, one_out), uniqueness_weight(n),
        )

    def test_blended_scores(self):
        keeper = make_keeper()
        scores = generate_forecast_scores(keeper, TOPIC, BLOCK, self.network())
        by_address = {s.address: s.score for s in scores}
        assert by_address[str(W1)] == pytest.approx(self.expected(120.0, 150.0, 2))
        assert by_address[str(W2)] == pytest.approx(self.expected(250.0, 80.0, 2))
        assert keeper.get_worker_forecast_scores(TOPIC, BLOCK) == scores

    def test_pairs_by_worker_not_position(self):
        keeper = make_keeper()
        network = self.network(one_in_forecaster_values=values({W2: 250.0, W1: 120.0}))
        scores = generate_forecast_scores(keeper, TOPIC, BLOCK, network)
        by_address = {s.address: s.score for s in scores}
        assert by_address[str(W1)] == pytest.approx(self.expected(120.0, 150.0, 2))
        assert by_address[str(W2)] == pytest.approx(self.expected(250.0, 80.0, 2))

    def test_single_forecaster_uses_one_in_only(self):
        network = self.network(
            one_out_forecaster_values=values({W1: 150.0}),
            one_in_forecaster_values=values({W1: 120.0}),
        )
        scores = generate_forecast_scores(make_keeper(), TOPIC, BLOCK, network)
        assert scores[0].score == pytest.approx(worker_score(120.0, 200.0))

    def test_unpaired_one_in_rejected(self):
        keeper = make_keeper()
        network = self.network(one_out_forecaster_values=values({W1: 150.0}))
        with pytest.raises(InvalidInputError):
            generate_forecast_scores(keeper, TOPIC, BLOCK, network)
        assert keeper.get_worker_forecast_scores(TOPIC, BLOCK) == []

    def test_unpaired_one_in_skipped_when_not_strict(self):
        keeper = make_keeper()
        network = self.network(one_out_forecaster_values=values({W1: 150.0}))
        scores = generate_forecast_scores(keeper, TOPIC, BLOCK, network, strict=False)
        assert [s.address for s in scores] == [str(W1)]
        assert scores[0].score == pytest.approx(self.expected(120.0, 150.0, 1))
        assert keeper.get_worker_forecast_scores(TOPIC, BLOCK) == scores

    def test_only_one_in_workers_scored(self):
        network = self.network(one_in_forecaster_values=values({W2: 250.0}))
        scores = generate_forecast_scores(make_keeper(), TOPIC, BLOCK, network)
        assert [s.address for s in scores] == [str(W2)]

    def test_missing_naive(self):
        with pytest.raises(InvalidInputError):
            generate_forecast_scores(make_keeper(), TOPIC, BLOCK, self.network(naive_value=None))

    def test_missing_naive_not_strict(self):
        network = self.network(naive_value=None)
        assert generate_forecast_scores(make_keeper(), TOPIC, BLOCK, network, strict=False) == []

    def test_no_one_in_values(self):
        network = self.network(one_in_forecaster_values=[])
        assert generate_forecast_scores(make_keeper(), TOPIC, BLOCK, network) == []
