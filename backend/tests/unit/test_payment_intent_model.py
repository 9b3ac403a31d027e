"""Unit tests for the PaymentIntent model and its transition table."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from ridepay.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    ErrorCode,
    InvalidStateError,
    PaymentIntentStatus,
    can_transition,
    ensure_transition,
)

_S = PaymentIntentStatus


class TestTransitionTable:
    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(PaymentIntentStatus)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (_S.REQUIRES_PAYMENT_METHOD, _S.AUTHORIZED),
            (_S.REQUIRES_ACTION, _S.PROCESSING),
            (_S.PROCESSING, _S.AUTHORIZED),
            (_S.AUTHORIZED, _S.SUCCEEDED),
            (_S.AUTHORIZED, _S.CANCELED),
        ],
    )
    def test_forward_moves_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (_S.SUCCEEDED, _S.CANCELED),
            (_S.CANCELED, _S.AUTHORIZED),
            (_S.AUTHORIZED, _S.REQUIRES_ACTION),
            (_S.REQUIRES_PAYMENT_METHOD, _S.SUCCEEDED),
        ],
    )
    def test_backward_or_skipping_moves_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_ensure_transition_raises_invalid_state(self):
        with pytest.raises(InvalidStateError) as exc_info:
            ensure_transition(_S.CANCELED, _S.SUCCEEDED, "PI-X")

        assert exc_info.value.code == ErrorCode.INVALID_STATE
        assert exc_info.value.details == {
            "current_status": "canceled",
            "target_status": "succeeded",
            "payment_intent_id": "PI-X",
        }

    def test_processor_requires_capture_maps_to_authorized(self):
        assert PaymentIntentStatus.from_processor("requires_capture") is _S.AUTHORIZED
        assert PaymentIntentStatus.from_processor("requires_action") is _S.REQUIRES_ACTION


class TestPaymentIntentModel:
    def test_total_must_match_subtotal_minus_discount(self, intent_factory):
        with pytest.raises(PydanticValidationError):
            intent_factory(amount_subtotal=4000, discount_amount=400, amount_total=4000)

    def test_capture_method_is_always_manual(self, intent_factory):
        with pytest.raises(PydanticValidationError):
            intent_factory(capture_method="automatic")

    def test_capturable_statuses(self, intent_factory):
        assert intent_factory(status=_S.AUTHORIZED).is_capturable
        assert intent_factory(status=_S.PROCESSING).is_capturable
        assert not intent_factory(status=_S.REQUIRES_ACTION).is_capturable
        assert not intent_factory(status=_S.SUCCEEDED).is_capturable

    def test_terminal_statuses(self, intent_factory):
        assert intent_factory(status=_S.CANCELED).is_terminal
        assert intent_factory(status=_S.FAILED).is_terminal
        assert not intent_factory(status=_S.AUTHORIZED).is_terminal

    def test_refundable_amount_tracks_metadata(self, intent_factory):
        intent = intent_factory(
            status=_S.SUCCEEDED,
            metadata={"amount_captured": 4000, "amount_refunded": 1500},
        )

        assert intent.amount_captured == 4000
        assert intent.amount_refunded == 1500
        assert intent.refundable_amount == 2500
