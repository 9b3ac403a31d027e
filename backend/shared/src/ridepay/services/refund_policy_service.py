"""Refund policy service for calculating ride cancellation refunds.

Implements the cancellation refund policy:
- Driver cancels: full refund (100%) regardless of timing
- Passenger cancels 24+ hours before departure: full refund (100%)
- Passenger cancels 12-24 hours before departure: partial refund (50%)
- Passenger cancels <12 hours before departure: no refund (0%)

The cancellation fee is always derived as ``original - refund`` so the two
amounts sum to the original exactly.
"""

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from typing import TypedDict

from ridepay.models.enums import CancellationRole


class RefundCalculation(TypedDict):
    """Result of refund policy calculation."""

    refund_eligible: bool
    refund_percentage: int  # 0, 50, or 100
    refund_amount: Decimal
    cancellation_fee: Decimal
    hours_before_departure: float  # rounded to 2 decimals, may be negative
    policy_tier: str  # "full", "partial", or "none"
    description: str


class RefundPolicyService:
    """Service for calculating refund amounts based on cancellation timing.

    Policy tiers (passenger cancellations):
    - FULL (100%): 24+ hours before departure
    - PARTIAL (50%): 12-24 hours before departure
    - NONE (0%): <12 hours before departure
    """

    # Policy thresholds (hours before departure)
    FULL_REFUND_HOURS = 24
    PARTIAL_REFUND_HOURS = 12

    # Refund percentages
    FULL_REFUND_PERCENT = 100
    PARTIAL_REFUND_PERCENT = 50
    NO_REFUND_PERCENT = 0

    def calculate_refund(
        self,
        departure_time: dt.datetime,
        original_amount: Decimal | int,
        cancellation_time: dt.datetime,
        cancelled_by_role: CancellationRole | str,
        *,
        quantum: Decimal = Decimal("0.01"),
    ) -> RefundCalculation:
        """Calculate refund terms for one booking's cancellation.

        Args:
            departure_time: Scheduled ride departure
            original_amount: The booking's own amount (dollars, or cents with
                ``quantum=Decimal("1")``)
            cancellation_time: When the cancellation was requested
            cancelled_by_role: driver or passenger
            quantum: Rounding unit for the refund amount

        Returns:
            RefundCalculation with amounts and policy details

        Raises:
            ValueError: If the amount is negative or the role is unknown
        """
        role = CancellationRole(cancelled_by_role)
        original = Decimal(original_amount)
        if original < 0:
            raise ValueError("original_amount must be non-negative")

        # Tier is decided on the exact value; only the reported hours are rounded
        seconds = (departure_time - cancellation_time).total_seconds()
        hours = Decimal(str(seconds)) / Decimal(3600)
        hours_rounded = float(hours.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

        if role is CancellationRole.DRIVER:
            percentage = self.FULL_REFUND_PERCENT
            tier = "full"
            description = "Full refund (100%): Ride cancelled by the driver"
        elif hours >= self.FULL_REFUND_HOURS:
            percentage = self.FULL_REFUND_PERCENT
            tier = "full"
            description = (
                f"Full refund (100%): Cancelled {hours_rounded} hours before departure "
                f"(policy: 24+ hours = full refund)"
            )
        elif hours >= self.PARTIAL_REFUND_HOURS:
            percentage = self.PARTIAL_REFUND_PERCENT
            tier = "partial"
            description = (
                f"Partial refund (50%): Cancelled {hours_rounded} hours before departure "
                f"(policy: 12-24 hours = 50% refund)"
            )
        else:
            percentage = self.NO_REFUND_PERCENT
            tier = "none"
            if hours < 0:
                description = "No refund: Cancelled after departure"
            else:
                description = (
                    f"No refund (0%): Cancelled {hours_rounded} hours before departure "
                    f"(policy: <12 hours = no refund)"
                )

        refund_amount = (original * percentage / Decimal(100)).quantize(
            quantum, rounding=ROUND_HALF_UP
        )
        cancellation_fee = original - refund_amount

        return RefundCalculation(
            refund_eligible=percentage > 0,
            refund_percentage=percentage,
            refund_amount=refund_amount,
            cancellation_fee=cancellation_fee,
            hours_before_departure=hours_rounded,
            policy_tier=tier,
            description=description,
        )

    def get_policy_description(self) -> str:
        """Get human-readable description of the refund policy.

        Returns:
            Policy description text
        """
        return (
            "Cancellation Policy:\n"
            "• Driver cancels: Full refund (100%)\n"
            "• 24+ hours before departure: Full refund (100%)\n"
            "• 12-24 hours before departure: Partial refund (50%)\n"
            "• Less than 12 hours before departure: No refund\n"
            "• After departure: No refund"
        )


def calculate_refund(
    departure_time: dt.datetime,
    original_amount: Decimal | int,
    cancellation_time: dt.datetime,
    cancelled_by_role: CancellationRole | str,
    *,
    quantum: Decimal = Decimal("0.01"),
) -> RefundCalculation:
    """Module-level shortcut for ``RefundPolicyService().calculate_refund``."""
    return RefundPolicyService().calculate_refund(
        departure_time,
        original_amount,
        cancellation_time,
        cancelled_by_role,
        quantum=quantum,
    )
