import pytest
from prometheus_client import REGISTRY

from halloo.reminders.dispatcher import (
    QUOTA_EXHAUSTED,
    RECIPIENT_INVALID_ADDRESS,
    RECIPIENT_MISSING,
    RECIPIENT_NO_ADDRESS,
    RECIPIENT_OPTED_OUT,
    RECIPIENT_UNCONFIRMED,
    DeliveryDispatcher,
    lateness_tier,
)
from halloo.reminders.schemas import AttemptOutcome, DispatchOutcome, ErrorKind

from conftest import FakeGateway, FakeUsage, make_recipient, make_schedule, utc


@pytest.fixture
def dispatcher(store, ledger, gateway, usage, error_sink, clock, reminder_settings):
    return DeliveryDispatcher(
        store=store,
        ledger=ledger,
        gateway=gateway,
        usage=usage,
        error_sink=error_sink,
        clock=clock,
        settings=reminder_settings,
    )


def test_successful_send_records_sent_attempt(dispatcher, store, ledger, gateway, usage):
    result = dispatcher.dispatch(store.get_schedule("sched-1"))

    assert result.outcome == DispatchOutcome.SENT
    assert len(gateway.sent) == 1
    to_address, body = gateway.sent[0]
    assert to_address == "+14155550123"
    assert body.startswith("Hi Grandma Rose! Time to: Take blood pressure pills")
    assert len(ledger.attempts) == 1
    attempt = ledger.attempts[0]
    assert attempt.outcome == AttemptOutcome.SENT
    assert attempt.scheduled_fire_time == utc(2025, 1, 1, 9, 0)
    assert attempt.latency_seconds == pytest.approx(30.0)
    assert attempt.gateway_message_id == "SM0001"
    assert usage.used == {"owner-1": 1}


def test_gateway_failure_records_failed_attempt(store, ledger, usage, error_sink, clock, reminder_settings):
    dispatcher = DeliveryDispatcher(store, ledger, FakeGateway(fail=True), usage, error_sink, clock, reminder_settings)

    result = dispatcher.dispatch(store.get_schedule("sched-1"))

    assert result.outcome == DispatchOutcome.FAILED
    assert ledger.attempts[0].outcome == AttemptOutcome.FAILED
    assert "Carrier rejected" in ledger.attempts[0].error_message
    assert usage.used == {}
    assert error_sink.records == []


def test_dispatching_twice_sends_once(dispatcher, store, ledger, gateway):
    schedule = store.get_schedule("sched-1")

    first = dispatcher.dispatch(schedule)
    second = dispatcher.dispatch(schedule)

    assert first.outcome == DispatchOutcome.SENT
    assert second.outcome == DispatchOutcome.SKIPPED_DUPLICATE
    assert len(gateway.sent) == 1
    assert [a.outcome for a in ledger.attempts] == [AttemptOutcome.SENT]


@pytest.mark.parametrize(
    "recipient, reason",
    [
        (None, RECIPIENT_MISSING),
        (make_recipient(confirmed=False), RECIPIENT_UNCONFIRMED),
        (make_recipient(opt_out=True), RECIPIENT_OPTED_OUT),
        (make_recipient(contact_address=None), RECIPIENT_NO_ADDRESS),
        (make_recipient(contact_address="415-555-0123"), RECIPIENT_INVALID_ADDRESS),
    ],
)
def test_ineligible_recipients_are_skipped(dispatcher, store, ledger, gateway, recipient, reason):
    store.recipients = {recipient.id: recipient} if recipient else {}
    before = REGISTRY.get_sample_value("reminders_dispatch_skipped_total", {"reason": reason}) or 0.0

    result = dispatcher.dispatch(store.get_schedule("sched-1"))

    assert result.outcome == DispatchOutcome.SKIPPED_INELIGIBLE
    assert result.reason == reason
    assert gateway.sent == []
    assert ledger.attempts == []
    after = REGISTRY.get_sample_value("reminders_dispatch_skipped_total", {"reason": reason})
    assert after == before + 1


def test_exhausted_quota_skips_send(store, ledger, gateway, error_sink, clock, reminder_settings):
    usage = FakeUsage(limit=1)
    usage.used["owner-1"] = 1
    dispatcher = DeliveryDispatcher(store, ledger, gateway, usage, error_sink, clock, reminder_settings)

    result = dispatcher.dispatch(store.get_schedule("sched-1"))

    assert result.outcome == DispatchOutcome.SKIPPED_INELIGIBLE
    assert result.reason == QUOTA_EXHAUSTED
    assert gateway.sent == []


def test_ledger_failure_is_recorded_and_not_raised(dispatcher, store, ledger, gateway, error_sink):
    ledger.fail_writes = True

    result = dispatcher.dispatch(store.get_schedule("sched-1"))

    assert result.outcome == DispatchOutcome.SENT
    assert len(gateway.sent) == 1
    assert error_sink.kinds() == [ErrorKind.LEDGER_WRITE_FAILED]


def test_racing_duplicate_is_reported(dispatcher, store, ledger, gateway, error_sink, monkeypatch):
    # The dedup check passes but another worker records the attempt first
    schedule = store.get_schedule("sched-1")
    monkeypatch.setattr(ledger, "has_attempt", lambda *_: False)
    dispatcher.dispatch(schedule)

    dispatcher.dispatch(schedule)

    assert len(gateway.sent) == 2
    assert len(ledger.attempts) == 1
    assert error_sink.kinds() == [ErrorKind.DUPLICATE_DELIVERY]


def test_message_mentions_photo_instructions(dispatcher, store, gateway):
    store.add(make_schedule(id="sched-photo", requires_photo=True, title="Water the plants"))

    dispatcher.dispatch(store.get_schedule("sched-photo"))

    assert gateway.sent[0][1] == "Hi Grandma Rose! Time to: Water the plants\n\nReply with a photo when done."


@pytest.mark.parametrize(
    "seconds, tier",
    [(0, "on_time"), (59, "on_time"), (60, "minor"), (120, "minor"), (121, "warning"), (900, "warning")],
)
def test_lateness_tiers(reminder_settings, seconds, tier):
    assert lateness_tier(seconds, reminder_settings) == tier
