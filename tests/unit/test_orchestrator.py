"""Unit tests for the verification orchestrator"""

import asyncio
import pytest
from datetime import timedelta
from goal_verifier.domain.exceptions import GoalNotFoundError, GoalNotVerifiableError, VendorAPIError, VerificationCycleError
from goal_verifier.domain.models import HealthDataType, PayoutRecord
from goal_verifier.services.orchestrator import TRIGGER_MANUAL, TRIGGER_WEBHOOK, VerificationConfig
from goal_verifier.utils.date_utils import utcnow


async def test_sleep_goal_completes_with_one_payout(orchestrator, ledger, store, payouts, make_goal):
    """Scores [85, 90, 82, 60, 95], target 80, 3 nights required -> streak 3, one payout of the reward"""
    goal = make_goal(reward=25.0)

    report = await orchestrator.trigger_manual_verification()

    assert report.trigger == TRIGGER_MANUAL
    assert report.goals_selected == 1
    assert report.goals_verified == 1
    assert report.payouts_executed == 1
    assert report.errors == {}
    loaded = store.get(goal.id)
    assert loaded.is_completed is True
    assert loaded.consecutive_success_days == 3
    assert payouts.get_by_goal(goal.id).amount == 25.0
    assert len(ledger.claims) == 1


async def test_unmet_goal_records_attempt_only(orchestrator, ledger, store, make_goal):
    goal = make_goal(conditions=["consecutive_nights >= 5"])

    report = await orchestrator.trigger_manual_verification()

    loaded = store.get(goal.id)
    assert report.goals_verified == 0
    assert loaded.is_completed is False
    assert loaded.consecutive_success_days == 3
    assert loaded.last_verification_attempt is not None
    assert ledger.claims == []


async def test_completed_goal_is_not_paid_again(orchestrator, ledger, make_goal):
    make_goal()

    await orchestrator.trigger_manual_verification()
    report = await orchestrator.trigger_manual_verification()

    assert report.skipped_reason == "no_goals"
    assert len(ledger.claims) == 1


async def test_timer_and_webhook_race_pays_once(orchestrator, ledger, payouts, store, make_goal):
    goal = make_goal()
    ledger.delay = 0.05

    await asyncio.gather(
        orchestrator.trigger_manual_verification(),
        orchestrator.trigger_verification_for_data_type(HealthDataType.SLEEP, {"event_type": "sleep_completed"}),
    )

    assert len(ledger.claims) == 1
    assert payouts.get_by_goal(goal.id) is not None
    assert store.get(goal.id).is_completed is True


async def test_expired_goal_never_pays(orchestrator, ledger, store, make_goal):
    goal = make_goal(deadline=utcnow() - timedelta(days=1))

    report = await orchestrator.trigger_manual_verification()

    assert report.skipped_reason == "no_goals"
    assert store.get(goal.id).is_completed is False
    assert ledger.claims == []


async def test_one_goal_failure_does_not_stop_others(orchestrator, ledger, store, make_goal):
    failing = make_goal(title="Ledger rejects this one")
    healthy = make_goal(title="Healthy")
    ledger.failing_goals = {failing.id}

    report = await orchestrator.trigger_manual_verification()

    assert failing.id in report.errors
    assert report.payouts_executed == 1
    assert store.get(healthy.id).is_completed is True
    assert store.get(failing.id).is_completed is False


async def test_ledger_failure_is_retried_next_cycle(orchestrator, ledger, store, make_goal):
    goal = make_goal()
    ledger.failures_remaining = 1

    first = await orchestrator.trigger_manual_verification()
    assert goal.id in first.errors
    assert store.get(goal.id).is_completed is False
    assert store.get(goal.id).is_verified is True

    second = await orchestrator.trigger_manual_verification()
    assert second.payouts_executed == 1
    assert store.get(goal.id).is_completed is True
    assert len(ledger.claims) == 1


async def test_vendor_failure_skips_cycle_without_touching_goals(orchestrator, vendor, store, make_goal):
    goal = make_goal()
    vendor.error = VendorAPIError("WHOOP API error: 503")

    report = await orchestrator.trigger_manual_verification()

    assert report.skipped_reason == "no_data"
    loaded = store.get(goal.id)
    assert loaded.last_verification_attempt is None
    assert loaded.consecutive_success_days == 0


async def test_unauthenticated_vendor_skips_cycle(orchestrator, vendor, make_goal):
    make_goal()
    vendor.authenticated = False

    report = await orchestrator.trigger_manual_verification()

    assert report.skipped_reason == "no_data"
    assert vendor.calls == []


async def test_vendor_timeout_skips_cycle(orchestrator, vendor, make_goal):
    make_goal()
    orchestrator.update_config(vendor_fetch_timeout_seconds=0.01)
    vendor.delay = 0.5

    report = await orchestrator.trigger_manual_verification()

    assert report.skipped_reason == "no_data"


async def test_store_failure_aborts_cycle(orchestrator, monkeypatch):
    def broken(now):
        raise RuntimeError("database is down")

    monkeypatch.setattr(orchestrator.store, "list_active", broken)

    with pytest.raises(VerificationCycleError):
        await orchestrator.trigger_manual_verification()


async def test_webhook_cycle_only_checks_matching_type(orchestrator, vendor, store, make_goal):
    sleep_goal = make_goal()
    strain_goal = make_goal(health_data_type=HealthDataType.STRAIN, target_value=15, conditions=[])

    report = await orchestrator.trigger_verification_for_data_type(HealthDataType.SLEEP)

    assert report.trigger == TRIGGER_WEBHOOK
    assert report.goals_selected == 1
    assert vendor.calls == [orchestrator.config.webhook_lookback_days]
    assert store.get(sleep_goal.id).is_completed is True
    assert store.get(strain_goal.id).last_verification_attempt is None


async def test_strain_goal_uses_lower_is_better(orchestrator, vendor, store, make_goal):
    today = utcnow().date()
    vendor.records = [
        {"date": (today - timedelta(days=i)).isoformat(), "workout": {"strain": strain}}
        for i, strain in enumerate([10.0, 14.9, 16.0, 5.0])
    ]
    goal = make_goal(health_data_type=HealthDataType.STRAIN, target_value=15, conditions=["consecutive_days >= 2"])

    await orchestrator.trigger_manual_verification()

    loaded = store.get(goal.id)
    assert loaded.consecutive_success_days == 2
    assert loaded.is_completed is True


async def test_auto_payout_disabled_verifies_without_paying(orchestrator, ledger, store, make_goal):
    goal = make_goal()
    orchestrator.update_config(auto_payout=False)

    report = await orchestrator.trigger_manual_verification()

    loaded = store.get(goal.id)
    assert report.goals_verified == 1
    assert report.payouts_executed == 0
    assert loaded.is_verified is True
    assert loaded.is_completed is False
    assert ledger.claims == []


async def test_verify_goal_on_demand(orchestrator, store, make_goal):
    goal = make_goal()

    result = await orchestrator.verify_goal(goal.id)

    assert result.is_successful is True
    assert result.consecutive_days == 3
    assert result.required_days == 3
    assert store.get(goal.id).is_completed is True

    with pytest.raises(GoalNotVerifiableError):
        await orchestrator.verify_goal(goal.id)


async def test_verify_goal_rejects_expired_and_unknown(orchestrator, make_goal):
    expired = make_goal(deadline=utcnow() - timedelta(minutes=1))

    with pytest.raises(GoalNotVerifiableError):
        await orchestrator.verify_goal(expired.id)
    with pytest.raises(GoalNotFoundError):
        await orchestrator.verify_goal("missing")


async def test_verify_goal_without_data_changes_nothing(orchestrator, vendor, store, make_goal):
    goal = make_goal()
    vendor.records = []

    result = await orchestrator.verify_goal(goal.id)

    assert result.is_successful is False
    assert result.message == "No vendor data available"
    assert store.get(goal.id).last_verification_attempt is None


async def test_scheduler_runs_until_stopped(orchestrator, store, make_goal):
    goal = make_goal()

    await orchestrator.start()
    assert orchestrator.is_running is True
    for _ in range(100):
        if orchestrator.last_report is not None:
            break
        await asyncio.sleep(0.01)
    orchestrator.stop()
    await orchestrator.join()

    assert orchestrator.is_running is False
    assert orchestrator.last_verification is not None
    assert store.get(goal.id).is_completed is True


async def test_start_twice_is_noop(orchestrator):
    await orchestrator.start()
    task = orchestrator._task

    await orchestrator.start()

    assert orchestrator._task is task
    orchestrator.stop()
    await orchestrator.join()


async def test_scheduler_survives_failing_cycle(orchestrator, monkeypatch):
    calls = []

    def broken(now):
        calls.append(now)
        raise RuntimeError("database is down")

    monkeypatch.setattr(orchestrator.store, "list_active", broken)

    await orchestrator.start()
    for _ in range(100):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.02)
    orchestrator.stop()
    await orchestrator.join()

    assert len(calls) >= 2


def test_status_and_config_update(orchestrator):
    status = orchestrator.get_status()
    assert status["is_running"] is False
    assert status["last_verification"] is None
    assert status["webhook_enabled"] is True

    config = orchestrator.update_config(verification_interval_seconds=120, auto_payout=False)

    assert config.verification_interval_seconds == 120
    assert orchestrator.get_status()["config"]["auto_payout"] is False


def test_config_from_settings():
    from goal_verifier.config import Settings

    config = VerificationConfig.from_settings(Settings(scheduled_lookback_days=14, auto_payout=False))

    assert config.scheduled_lookback_days == 14
    assert config.auto_payout is False


async def test_non_finite_vendor_values_do_not_abort_cycle(orchestrator, vendor, store, make_goal):
    goal = make_goal()
    today = utcnow().date().isoformat()
    vendor.records = vendor.records + [
        {"date": today, "steps": "1e400"},
        {"date": "2020-01-01", "steps": float("nan"), "sleep": {"score": float("inf")}},
    ]

    report = await orchestrator.trigger_manual_verification()

    assert report.errors == {}
    assert report.payouts_executed == 1
    assert store.get(goal.id).is_completed is True


async def test_race_reports_a_single_payout(orchestrator, ledger, make_goal):
    make_goal()
    ledger.delay = 0.05

    reports = await asyncio.gather(
        orchestrator.trigger_manual_verification(),
        orchestrator.trigger_verification_for_data_type(HealthDataType.SLEEP),
    )

    assert sum(report.payouts_executed for report in reports) == 1


async def test_recovered_payout_is_not_counted_as_executed(orchestrator, ledger, store, payouts, make_goal):
    goal = make_goal()
    payouts.create(PayoutRecord(goal_id=goal.id, amount=25.0, transaction_reference="tx_prior", executed_at=utcnow()))

    report = await orchestrator.trigger_manual_verification()

    assert report.payouts_executed == 0
    assert report.goals_verified == 1
    assert store.get(goal.id).is_completed is True
    assert ledger.claims == []


async def test_restart_waits_for_in_flight_cycle(orchestrator, vendor, make_goal):
    make_goal(conditions=["consecutive_nights >= 10"])
    vendor.delay = 0.1

    await orchestrator.start()
    await asyncio.sleep(0.02)
    previous = orchestrator._task
    orchestrator.stop()

    await orchestrator.start()

    assert previous.done()
    assert orchestrator._task is not previous
    assert orchestrator.is_running is True
    orchestrator.stop()
    await orchestrator.join()
    assert orchestrator._task is None


async def test_stop_during_restart_leaves_scheduler_stopped(orchestrator, vendor, make_goal):
    make_goal(conditions=["consecutive_nights >= 10"])
    vendor.delay = 0.1

    await orchestrator.start()
    await asyncio.sleep(0.02)
    orchestrator.stop()

    restart = asyncio.create_task(orchestrator.start())
    await asyncio.sleep(0.01)
    orchestrator.stop()
    await restart
    await orchestrator.join()

    assert orchestrator.is_running is False
    assert orchestrator._task is None
