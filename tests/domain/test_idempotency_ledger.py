import copy

import pytest

from domain.common.exceptions import DomainValidationException
from domain.webhook.entity import InboundEvent, InboundEventState, LedgerOutcome
from domain.webhook.repository import InboundEventRepository
from domain.webhook.service import IdempotencyLedger


class _Repo(InboundEventRepository):
    def __init__(self):
        self.rows = {}

    async def insert_if_absent(self, event):
        key = (event.source, event.event_id)
        if key in self.rows:
            return copy.deepcopy(self.rows[key]), False
        event.id = len(self.rows) + 1
        self.rows[key] = copy.deepcopy(event)
        return event, True

    async def get(self, source, event_id, *, for_update=False):
        row = self.rows.get((source, event_id))
        return copy.deepcopy(row) if row else None

    async def update(self, event):
        self.rows[(event.source, event.event_id)] = copy.deepcopy(event)
        return event

    async def list_replayable(self, *, older_than, limit=50):
        return []


@pytest.mark.asyncio
async def test_first_sighting_is_new_then_retry():
    ledger = IdempotencyLedger(_Repo())

    first = await ledger.record_or_skip("stripe", "evt_1", "payment_intent.succeeded", "h1")
    second = await ledger.record_or_skip("stripe", "evt_1", "payment_intent.succeeded", "h1")

    assert first.outcome == LedgerOutcome.NEW
    assert second.outcome == LedgerOutcome.RETRY
    assert second.should_process
    assert not second.payload_drift


@pytest.mark.asyncio
async def test_processed_event_is_duplicate():
    repo = _Repo()
    ledger = IdempotencyLedger(repo)
    decision = await ledger.record_or_skip("stripe", "evt_1", "t", "h1")
    await ledger.mark_processed(decision.record)

    again = await ledger.record_or_skip("stripe", "evt_1", "t", "h2")

    assert again.outcome == LedgerOutcome.DUPLICATE
    assert not again.should_process
    assert again.payload_drift
    assert repo.rows[("stripe", "evt_1")].state == InboundEventState.PROCESSED


@pytest.mark.asyncio
async def test_same_event_id_from_other_source_is_independent():
    ledger = IdempotencyLedger(_Repo())
    await ledger.record_or_skip("stripe", "evt_1", "t", "h")

    other = await ledger.record_or_skip("paypal", "evt_1", "t", "h")

    assert other.outcome == LedgerOutcome.NEW


@pytest.mark.asyncio
async def test_exhausted_event_escalates_once():
    repo = _Repo()
    ledger = IdempotencyLedger(repo)
    await ledger.record_or_skip("stripe", "evt_1", "t", "h", max_retries=2)
    await ledger.record_failure("stripe", "evt_1", "boom")
    await ledger.record_failure("stripe", "evt_1", "boom again")

    first = await ledger.record_or_skip("stripe", "evt_1", "t", "h", max_retries=2)
    second = await ledger.record_or_skip("stripe", "evt_1", "t", "h", max_retries=2)

    assert first.outcome == LedgerOutcome.EXHAUSTED
    assert first.newly_escalated
    assert second.outcome == LedgerOutcome.EXHAUSTED
    assert not second.newly_escalated
    row = repo.rows[("stripe", "evt_1")]
    assert row.retry_count == 2
    assert row.last_error == "boom again"
    assert row.state == InboundEventState.FAILED


@pytest.mark.asyncio
async def test_claim_returns_none_once_processed():
    ledger = IdempotencyLedger(_Repo())
    decision = await ledger.record_or_skip("stripe", "evt_1", "t", "h")

    record = await ledger.claim("stripe", "evt_1")
    assert record is not None
    await ledger.mark_processed(record)

    assert await ledger.claim("stripe", "evt_1") is None
    assert await ledger.claim("stripe", "evt_missing") is None
    # Failures after processing are not counted
    after = await ledger.record_failure("stripe", "evt_1", "late failure")
    assert after.retry_count == 0
    assert decision.record.event_id == "evt_1"


def test_failure_message_is_truncated():
    event = InboundEvent(id=None, source="stripe", event_id="evt_1", event_type="t", payload_hash="h")
    event.record_failure("x" * 5000)
    assert len(event.last_error) == 2000
    assert event.retry_count == 1


def test_event_requires_source_and_positive_max_retries():
    with pytest.raises(DomainValidationException):
        InboundEvent(id=None, source="", event_id="evt_1", event_type="t", payload_hash="h")
    with pytest.raises(DomainValidationException):
        InboundEvent(id=None, source="stripe", event_id="evt_1", event_type="t", payload_hash="h", max_retries=0)
