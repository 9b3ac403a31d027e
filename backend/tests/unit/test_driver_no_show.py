"""Unit tests for driver no-show reports.

Test categories:
- Authorized payments (hold released, no penalty)
- Captured payments (full refund, penalty equal to the refund)
- Repeated reports and refund retries
- Payments with nothing to give back
"""

from unittest.mock import patch

import pytest

from ridepay.models import (
    ErrorCode,
    GatewayError,
    NoShowStatus,
    PaymentIntentStatus,
    ValidationError,
)

_S = PaymentIntentStatus


def _report(payments, intent, **overrides):
    kwargs = {"reported_by": "rider-sub-1", "reason": "Driver never arrived"}
    kwargs.update(overrides)
    return payments.report_driver_no_show(intent.payment_intent_id, **kwargs)


class TestAuthorizedPayment:
    def test_hold_released_without_penalty(self, payments, gateway, store, authorized_intent, no_shows):
        outcome = _report(payments, authorized_intent)

        assert outcome.success is True
        assert outcome.no_show_id == "NS-PI-TEST00000001"
        assert outcome.status == NoShowStatus.CONFIRMED
        assert outcome.refund_amount == 4000
        assert outcome.penalty_amount == 0
        gateway.cancel.assert_called_once_with(authorized_intent.stripe_payment_intent_id, "Driver no-show")
        assert store.get(authorized_intent.payment_intent_id).status == _S.CANCELED

        record = no_shows.get(outcome.no_show_id)
        assert record.refund_issued is True
        assert record.penalty_applied is False
        assert record.driver_id == "driver-sub-1"
        assert record.reported_by == "rider-sub-1"

    def test_history_and_notice_written(self, payments, authorized_intent, table_items):
        _report(payments, authorized_intent)

        assert [h["status"] for h in table_items("payment-history")] == ["cancelled"]
        notices = [e for e in table_items("outbox-events") if e["event_type"] == "no_show.notice"]
        assert len(notices) == 1
        assert notices[0]["payload"]["payee_id"] == "driver-sub-1"
        assert notices[0]["payload"]["refund_amount"] == 4000


class TestCapturedPayment:
    def test_full_refund_is_the_penalty(self, payments, gateway, store, captured_intent, no_shows, table_items):
        outcome = _report(payments, captured_intent)

        assert outcome.success is True
        assert outcome.refund_amount == 4000
        assert outcome.penalty_amount == 4000
        assert gateway.refund.call_args.args[1] == 4000
        assert store.get(captured_intent.payment_intent_id).amount_refunded == 4000

        record = no_shows.get(outcome.no_show_id)
        assert record.penalty_applied is True
        assert [h["status"] for h in table_items("payment-history")] == ["refunded"]
        event_types = sorted(e["event_type"] for e in table_items("outbox-events"))
        assert event_types == ["earnings.reversal", "no_show.notice"]

    def test_refunds_only_what_is_left(self, payments, gateway, captured_intent):
        payments.refund_payment(captured_intent.payment_intent_id, 1000, "late pickup")

        outcome = _report(payments, captured_intent)

        assert outcome.refund_amount == 3000
        assert outcome.penalty_amount == 3000
        assert gateway.refund.call_args.args[1] == 3000


class TestRepeatedReports:
    def test_second_report_returns_first(self, payments, gateway, authorized_intent):
        first = _report(payments, authorized_intent)
        second = _report(payments, authorized_intent, reported_by="driver-sub-1", reason="Rider was wrong")

        assert second.success is True
        assert second.message == "No-show already reported"
        assert second.refund_amount == first.refund_amount
        assert gateway.cancel.call_count == 1

    def test_failed_refund_is_retried_by_next_report(self, payments, gateway, store, captured_intent, no_shows):
        gateway.refund.side_effect = GatewayError("processor down", stripe_error_code="api_error")

        failed = _report(payments, captured_intent)

        assert failed.success is False
        assert failed.status == NoShowStatus.PENDING
        assert failed.error == "processor down"
        assert no_shows.get(failed.no_show_id).error_message == "processor down"

        gateway.refund.side_effect = lambda external_id, amount=None, reason=None, **kwargs: {
            "refund_id": "re_retry",
            "amount_refunded": amount,
            "status": "succeeded",
        }
        retried = _report(payments, captured_intent)

        assert retried.success is True
        assert retried.status == NoShowStatus.CONFIRMED
        assert retried.penalty_amount == 4000
        assert retried.error is None
        assert store.get(captured_intent.payment_intent_id).amount_refunded == 4000

    def test_retry_after_unrecorded_refund_does_not_refund_again(
        self, payments, gateway, store, captured_intent, no_shows
    ):
        # The refund went through but the report was never confirmed
        with patch.object(no_shows, "confirm", return_value=None):
            _report(payments, captured_intent)
        assert no_shows.get("NS-PI-TEST00000002").status == NoShowStatus.PENDING

        outcome = _report(payments, captured_intent)

        assert outcome.refund_amount == 4000
        assert outcome.penalty_amount == 4000
        assert gateway.refund.call_count == 1
        assert no_shows.get(outcome.no_show_id).status == NoShowStatus.CONFIRMED

    def test_retry_after_unrecorded_release(self, payments, gateway, authorized_intent, no_shows):
        with patch.object(no_shows, "confirm", return_value=None):
            _report(payments, authorized_intent)

        outcome = _report(payments, authorized_intent)

        assert outcome.refund_amount == 4000
        assert gateway.cancel.call_count == 1


class TestNothingToGiveBack:
    def test_payment_cancelled_for_another_reason(self, payments, gateway, authorized_intent):
        payments.cancel_payment(authorized_intent.payment_intent_id, "rider changed plans")

        outcome = _report(payments, authorized_intent)

        assert outcome.success is True
        assert outcome.status == NoShowStatus.CONFIRMED
        assert outcome.refund_amount == 0
        assert gateway.cancel.call_count == 1

    def test_unconfirmed_payment_stays_pending(self, payments, gateway, store, intent_factory):
        intent = intent_factory("PI-AWAITINGCARD", status=_S.REQUIRES_ACTION)
        store.create(intent)

        outcome = _report(payments, intent)

        assert outcome.success is True
        assert outcome.status == NoShowStatus.PENDING
        assert "requires_action" in outcome.message
        assert not gateway.method_calls

    def test_reporter_and_reason_required(self, payments, gateway, authorized_intent, table_items):
        with pytest.raises(ValidationError) as exc_info:
            _report(payments, authorized_intent, reason="")

        assert exc_info.value.code == ErrorCode.MISSING_REFERENCE
        assert table_items("driver-no-shows") == []
        assert not gateway.method_calls

    def test_unknown_intent(self, payments):
        with pytest.raises(ValidationError) as exc_info:
            payments.report_driver_no_show("PI-MISSING", reported_by="rider-sub-1", reason="Driver never arrived")

        assert exc_info.value.code == ErrorCode.PAYMENT_INTENT_NOT_FOUND
