"""Unit tests for CaptureQueue against moto DynamoDB.

Test categories:
- Enqueue (one entry per payment)
- Selection order and filters
- Conditional claim (advisory lock)
- Status transitions
- Stale entry recovery
"""

import datetime as dt

from ridepay.models import CaptureQueueStatus
from ridepay.services.capture_queue import entry_id_for

_Q = CaptureQueueStatus


def _enqueue_many(queue, store, intent_factory, clock, count: int):
    entries = []
    for i in range(count):
        intent = intent_factory(f"PI-TEST{i:08d}")
        store.create(intent)
        entries.append(queue.enqueue(intent, clock.now + dt.timedelta(minutes=i)))
    return entries


class TestEnqueue:
    def test_creates_pending_entry(self, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)

        assert entry.entry_id == f"CQ-{authorized_intent.payment_intent_id}"
        assert entry.status == _Q.PENDING
        assert entry.attempts == 0
        assert entry.amount_cents == 4000
        assert queue.get(entry.entry_id) == entry

    def test_second_enqueue_is_ignored(self, queue, authorized_intent, clock):
        queue.enqueue(authorized_intent, clock.now)

        assert queue.enqueue(authorized_intent, clock.now) is None


class TestSelectPending:
    def test_oldest_first_up_to_batch_size(self, queue, store, intent_factory, clock):
        entries = _enqueue_many(queue, store, intent_factory, clock, 5)

        selected = queue.select_pending(3, 5, clock.now + dt.timedelta(hours=1))

        assert [e.entry_id for e in selected] == [e.entry_id for e in entries[:3]]

    def test_excludes_entries_out_of_attempts(self, queue, store, intent_factory, clock):
        first, second = _enqueue_many(queue, store, intent_factory, clock, 2)
        claimed = queue.claim(first.entry_id, 1, clock.now)
        queue.release_for_retry(claimed.entry_id, "declined", clock.now)

        selected = queue.select_pending(10, 1, clock.now + dt.timedelta(hours=1))

        assert [e.entry_id for e in selected] == [second.entry_id]

    def test_excludes_entries_waiting_for_backoff(self, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)
        queue.claim(entry.entry_id, 5, clock.now)
        queue.release_for_retry(
            entry.entry_id, "declined", clock.now, clock.now + dt.timedelta(minutes=5)
        )

        assert queue.select_pending(10, 5, clock.now) == []
        later = queue.select_pending(10, 5, clock.now + dt.timedelta(minutes=5))
        assert [e.entry_id for e in later] == [entry.entry_id]

    def test_non_positive_batch_selects_nothing(self, queue, authorized_intent, clock):
        queue.enqueue(authorized_intent, clock.now)

        assert queue.select_pending(0, 5, clock.now) == []


class TestClaim:
    def test_claim_counts_attempt(self, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)

        claimed = queue.claim(entry.entry_id, 5, clock.now)

        assert claimed.status == _Q.PROCESSING
        assert claimed.attempts == 1
        assert claimed.last_attempt_at == clock.now

    def test_second_claim_loses(self, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)
        queue.claim(entry.entry_id, 5, clock.now)

        assert queue.claim(entry.entry_id, 5, clock.now) is None

    def test_claim_refused_at_max_attempts(self, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)
        queue.claim(entry.entry_id, 1, clock.now)
        queue.release_for_retry(entry.entry_id, "declined", clock.now)

        assert queue.claim(entry.entry_id, 1, clock.now) is None


class TestTransitions:
    def test_complete_clears_error(self, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)
        queue.claim(entry.entry_id, 5, clock.now)
        queue.release_for_retry(entry.entry_id, "declined", clock.now)
        queue.claim(entry.entry_id, 5, clock.now)

        assert queue.mark_completed(entry.entry_id, clock.now) is True

        stored = queue.get(entry.entry_id)
        assert stored.status == _Q.COMPLETED
        assert stored.attempts == 2
        assert stored.error_message is None

    def test_complete_requires_processing(self, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)

        assert queue.mark_completed(entry.entry_id, clock.now) is False
        assert queue.get(entry.entry_id).status == _Q.PENDING

    def test_ineligible_entry_fails_without_attempt(self, queue, authorized_intent, clock):
        entry = queue.enqueue(authorized_intent, clock.now)

        assert queue.mark_ineligible(entry.entry_id, "Payment is canceled", clock.now) is True

        stored = queue.get(entry_id_for(authorized_intent.payment_intent_id))
        assert stored.status == _Q.FAILED
        assert stored.attempts == 0
        assert stored.error_message == "Payment is canceled"


class TestStaleRecovery:
    def test_resets_only_old_processing_entries(self, queue, store, intent_factory, clock):
        old, recent, pending = _enqueue_many(queue, store, intent_factory, clock, 3)
        queue.claim(old.entry_id, 5, clock.now)
        queue.claim(recent.entry_id, 5, clock.now + dt.timedelta(minutes=30))

        cutoff = clock.now + dt.timedelta(minutes=15)
        assert [e.entry_id for e in queue.find_stale(cutoff)] == [old.entry_id]

        reset = queue.reset_stale(cutoff, clock.now + dt.timedelta(minutes=40))

        assert reset == [old.entry_id]
        stored = queue.get(old.entry_id)
        assert stored.status == _Q.PENDING
        assert stored.attempts == 1
        assert queue.get(recent.entry_id).status == _Q.PROCESSING
        assert queue.get(pending.entry_id).status == _Q.PENDING
