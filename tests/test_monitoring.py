"""
Tests for AgriPilot Monitoring Pipeline

End-to-end cycles: telemetry -> aggregation -> conditions -> trigger
-> payout -> claim.
"""
import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

from agripilot.engine import AutoApprovalSweeper
from agripilot.events import EarlyWarningRaised, PolicyStatusChanged
from agripilot.models import (
    AggregationFunction,
    ClaimStatus,
    LogicalOperator,
    RegisteredPolicyStatus,
    ThresholdOperator,
    TriBool,
)

from tests.conftest import (
    T0,
    make_base_policy,
    make_breakdown,
    make_condition,
    make_registered_policy,
    make_series,
    make_trigger,
    store_policy,
)

DRY_WEEK = [4, 5, 6, 3, 4, 5, 5]  # 32mm


def _use_trigger(catalog, *conditions, operator=LogicalOperator.AND, blackout_periods=()):
    catalog.add_base_policy(make_base_policy(
        trigger=make_trigger(
            conditions=list(conditions),
            logical_operator=operator,
            blackout_periods=blackout_periods,
        )
    ))


def _heat_condition():
    return make_condition(
        "cond-heat",
        data_source_id="ds-temp",
        aggregation_function=AggregationFunction.MAX,
        aggregation_window_days=5,
        threshold_operator=ThresholdOperator.GT,
        threshold_value=38.0,
        condition_order=2,
    )


# =============================================================================
# Claim Generation
# =============================================================================

class TestEvaluatePolicy:
    """Tests for MonitoringPipeline.evaluate_policy."""

    def test_dry_week_generates_claim(self, pipeline, telemetry, repository, active_policy):
        """32mm over 7 days against < 50mm: 36% shortfall on 10,000,000 VND."""
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))

        evaluation = pipeline.evaluate_policy(active_policy.id, T0)

        assert evaluation.outcome.fired is True
        assert evaluation.claim_created
        claim = repository.get_claim(evaluation.claim.id)
        assert claim.claim_amount == 3_600_000
        assert claim.over_threshold_value == pytest.approx(0.36)
        assert claim.status == ClaimStatus.PENDING_PARTNER_REVIEW
        assert claim.trigger_timestamp == T0
        assert claim.evidence_summary["driver_condition_id"] == "cond-rain"
        assert claim.evidence_summary["conditions"][0]["aggregated_value"] == 32.0

    def test_enough_rain_no_claim(self, pipeline, telemetry, active_policy):
        telemetry.add_samples("farm-1", "rainfall", make_series([10] * 7))
        evaluation = pipeline.evaluate_policy(active_policy.id, T0)
        assert evaluation.outcome.fired is False
        assert not evaluation.claim_created
        assert evaluation.skipped_reason is None

    def test_and_trigger_needs_both_conditions(self, pipeline, catalog, telemetry, repository, active_policy):
        """Dry week but maximum temperature stays under 38C."""
        _use_trigger(catalog, make_condition(condition_order=1), _heat_condition())
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))
        telemetry.add_samples("farm-1", "temperature_max", make_series([35, 36, 37, 36, 35]))

        evaluation = pipeline.evaluate_policy(active_policy.id, T0)

        assert evaluation.outcome.result is TriBool.FALSE
        assert not evaluation.claim_created
        assert repository.list_claims() == []

    def test_and_trigger_fires_with_both(self, pipeline, catalog, telemetry, active_policy):
        _use_trigger(catalog, make_condition(condition_order=1), _heat_condition())
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))
        telemetry.add_samples("farm-1", "temperature_max", make_series([36, 39, 40, 41.8, 39]))

        evaluation = pipeline.evaluate_policy(active_policy.id, T0)

        # rain severity 0.36 beats heat severity 0.1
        assert evaluation.claim_created
        assert evaluation.breakdown.driver_condition_id == "cond-rain"
        assert evaluation.breakdown.claim_amount == 3_600_000

    def test_or_trigger_with_missing_data_still_fires(self, pipeline, catalog, telemetry, active_policy):
        _use_trigger(
            catalog, make_condition(condition_order=1), _heat_condition(),
            operator=LogicalOperator.OR,
        )
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))

        evaluation = pipeline.evaluate_policy(active_policy.id, T0)

        assert evaluation.claim_created
        heat = evaluation.outcome.condition_results[1]
        assert heat.fired is TriBool.UNKNOWN

    def test_missing_data_never_fires(self, pipeline, repository, active_policy):
        evaluation = pipeline.evaluate_policy(active_policy.id, T0)
        assert evaluation.outcome.result is TriBool.UNKNOWN
        assert not evaluation.claim_created
        assert repository.list_claims() == []

    def test_samples_outside_window_are_missing(self, pipeline, telemetry, active_policy):
        telemetry.add_samples("farm-1", "rainfall", make_series([1, 1], end=T0 - timedelta(days=20)))
        evaluation = pipeline.evaluate_policy(active_policy.id, T0)
        assert evaluation.outcome.result is TriBool.UNKNOWN


class TestSuppression:
    """Policies and cycles that must not produce a claim."""

    def test_open_claim_suppresses_duplicate(self, pipeline, telemetry, repository, active_policy):
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK + [4]))
        first = pipeline.evaluate_policy(active_policy.id, T0 - timedelta(days=1))
        second = pipeline.evaluate_policy(active_policy.id, T0)

        assert first.claim_created
        assert second.outcome.fired is True
        assert not second.claim_created
        assert second.skipped_reason == f"open claim {first.claim.claim_number}"
        assert len(repository.list_claims()) == 1

    def test_new_claim_after_rejection(self, pipeline, lifecycle, telemetry, repository, active_policy):
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK + [4]))
        first = pipeline.evaluate_policy(active_policy.id, T0 - timedelta(days=1))
        lifecycle.reject(first.claim.id, "partner-1", "trigger_not_met", "Gauge blocked")

        second = pipeline.evaluate_policy(active_policy.id, T0)
        assert second.claim_created
        assert len(repository.list_claims()) == 2

    def test_blackout_period(self, pipeline, catalog, telemetry, repository, active_policy):
        _use_trigger(catalog, make_condition(), blackout_periods=[("03-10", "03-20")])
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))

        evaluation = pipeline.evaluate_policy(active_policy.id, T0)

        assert evaluation.skipped_reason == "blackout period"
        assert evaluation.blackout_window == (date(2025, 3, 10), date(2025, 3, 20))
        assert evaluation.to_dict()["blackout_window"] == ["2025-03-10", "2025-03-20"]
        assert repository.list_claims() == []
        # counters still advance inside the blackout
        assert repository.get_counter(active_policy.id, "cond-rain").run_length == 1

    def test_inactive_policy_skipped(self, pipeline, repository):
        policy = store_policy(
            repository, make_registered_policy(status=RegisteredPolicyStatus.DISPUTE)
        )
        evaluation = pipeline.evaluate_policy(policy.id, T0)
        assert evaluation.skipped_reason == "policy is dispute"
        assert evaluation.outcome is None

    def test_outside_coverage_period(self, pipeline, repository):
        policy = store_policy(repository, make_registered_policy(
            coverage_start=date(2025, 6, 1), coverage_end=date(2025, 11, 30),
        ))
        evaluation = pipeline.evaluate_policy(policy.id, T0)
        assert evaluation.skipped_reason == "outside coverage period"

    def test_base_policy_without_trigger(self, pipeline, catalog, active_policy):
        catalog.add_base_policy(make_base_policy())
        evaluation = pipeline.evaluate_policy(active_policy.id, T0)
        assert evaluation.skipped_reason == "base policy has no trigger"

    def test_concurrent_cycles_create_one_claim(self, pipeline, telemetry, repository, active_policy):
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))
        with ThreadPoolExecutor(max_workers=4) as pool:
            evaluations = list(pool.map(
                lambda _: pipeline.evaluate_policy(active_policy.id, T0), range(4)
            ))
        assert sum(e.claim_created for e in evaluations) == 1
        assert len(repository.list_claims()) == 1


# =============================================================================
# Breach Counters
# =============================================================================

class TestBreachCounters:
    """Counters persist across cycles."""

    def test_consecutive_cycles(self, pipeline, catalog, telemetry, repository, active_policy):
        _use_trigger(catalog, make_condition(consecutive_required=2))
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK + [4]))

        day1 = pipeline.evaluate_policy(active_policy.id, T0 - timedelta(days=1))
        assert not day1.claim_created
        assert repository.get_counter(active_policy.id, "cond-rain").run_length == 1

        day2 = pipeline.evaluate_policy(active_policy.id, T0)
        assert day2.claim_created
        assert repository.get_counter(active_policy.id, "cond-rain").run_length == 2

    def test_replayed_cycle_does_not_count_twice(self, pipeline, catalog, telemetry, repository, active_policy):
        _use_trigger(catalog, make_condition(consecutive_required=2))
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))

        pipeline.evaluate_policy(active_policy.id, T0)
        replay = pipeline.evaluate_policy(active_policy.id, T0)

        assert not replay.claim_created
        counter = repository.get_counter(active_policy.id, "cond-rain")
        assert counter.run_length == 1
        assert counter.revision == 1

    def test_missing_data_keeps_run(self, pipeline, catalog, telemetry, repository, active_policy):
        _use_trigger(catalog, make_condition(consecutive_required=3))
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK, end=T0 - timedelta(days=1)))

        pipeline.evaluate_policy(active_policy.id, T0 - timedelta(days=1))
        # nothing in the 7-day window ten days later
        pipeline.evaluate_policy(active_policy.id, T0 + timedelta(days=9))

        counter = repository.get_counter(active_policy.id, "cond-rain")
        assert counter.run_length == 1
        assert counter.last_evaluated_at == T0 + timedelta(days=9)


# =============================================================================
# Early Warning and Cycles
# =============================================================================

class TestEarlyWarning:

    def test_early_warning_event(self, pipeline, catalog, telemetry, recorder, active_policy):
        _use_trigger(catalog, make_condition(early_warning_threshold=65.0))
        telemetry.add_samples("farm-1", "rainfall", make_series([60 / 7] * 7))

        evaluation = pipeline.evaluate_policy(active_policy.id, T0)

        assert not evaluation.claim_created
        warnings = recorder.of_type(EarlyWarningRaised)
        assert len(warnings) == 1
        assert warnings[0].condition_ids == ("cond-rain",)
        assert warnings[0].registered_policy_id == active_policy.id


class TestRunCycle:
    """Tests for MonitoringPipeline.run_cycle."""

    def test_one_failing_policy_does_not_stop_cycle(self, pipeline, telemetry, repository, active_policy):
        store_policy(repository, make_registered_policy(base_policy_id="bp-unknown"))
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))

        evaluations = pipeline.run_cycle(T0)

        assert [e.registered_policy_id for e in evaluations] == [active_policy.id]
        assert evaluations[0].claim_created

    def test_only_active_policies(self, pipeline, repository, active_policy):
        store_policy(repository, make_registered_policy(status=RegisteredPolicyStatus.CANCELLED))
        evaluations = pipeline.run_cycle(T0)
        assert [e.registered_policy_id for e in evaluations] == [active_policy.id]

    def test_lapsed_policy_expires_before_evaluation(self, pipeline, repository, recorder, active_policy):
        lapsed = store_policy(repository, make_registered_policy(
            coverage_start=date(2024, 1, 1), coverage_end=date(2024, 12, 31),
        ))

        evaluations = pipeline.run_cycle(T0)

        assert [e.registered_policy_id for e in evaluations] == [active_policy.id]
        assert repository.get_policy(lapsed.id).status == RegisteredPolicyStatus.EXPIRED
        assert [e.registered_policy_id for e in recorder.of_type(PolicyStatusChanged)] == [lapsed.id]

    def test_to_dict(self, pipeline, telemetry, active_policy):
        telemetry.add_samples("farm-1", "rainfall", make_series(DRY_WEEK))
        data = pipeline.evaluate_policy(active_policy.id, T0).to_dict()
        assert data["claim_amount"] == 3_600_000
        assert data["outcome"]["fired"] is True


class TestAutoApprovalSweeper:
    """Background sweep wrapper."""

    def test_run_once(self, lifecycle, repository, active_policy, base_policy):
        created = T0 - timedelta(hours=49)
        claim = lifecycle.generate(
            active_policy, base_policy, base_policy.trigger.id, make_breakdown(), created, now=created
        )
        sweeper = AutoApprovalSweeper(lifecycle, interval_seconds=3600)

        result = sweeper.run_once()

        assert result.approved == [claim.id]
        assert sweeper.last_result is result
        assert repository.get_claim(claim.id).auto_approved is True

    def test_start_and_stop(self, lifecycle):
        sweeper = AutoApprovalSweeper(lifecycle, interval_seconds=3600)
        sweeper.start()
        assert sweeper.running
        sweeper.stop()
        assert not sweeper.running
