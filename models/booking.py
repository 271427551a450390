from datetime import datetime
from models.db import db

# status values: pending, confirmed, in_progress, completed, declined, cancelled
TERMINAL_STATUSES = ("completed", "declined", "cancelled")
# terminal without a payout; any money captured for these goes back to the customer
CLOSED_STATUSES = ("declined", "cancelled")

# payment_status values: pending, authorized, funds_held_in_escrow, paid,
# payout_completed, refunded, voided, failed
# "paid" is the legacy name for escrowed funds on older rows
ESCROW_PAYMENT_STATUSES = ("funds_held_in_escrow", "paid")
# not captured yet; cancelling the payment intent releases them
RELEASABLE_PAYMENT_STATUSES = ("pending", "authorized")


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("service_offerings.id"), nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(30), nullable=False, default="pending", index=True)

    # all money columns are minor units (pence)
    total_amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="gbp")
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True, index=True)

    amount_held_for_provider = db.Column(db.Integer, nullable=True)
    platform_fee_held = db.Column(db.Integer, nullable=True)
    funds_held_at = db.Column(db.DateTime, nullable=True)

    provider_payout_amount = db.Column(db.Integer, nullable=True)
    platform_fee_collected = db.Column(db.Integer, nullable=True)
    provider_transfer_id = db.Column(db.String(255), nullable=True, unique=True)
    provider_paid_at = db.Column(db.DateTime, nullable=True)

    refund_id = db.Column(db.String(255), nullable=True)
    declined_reason = db.Column(db.String(500), nullable=True)
    cancelled_reason = db.Column(db.String(500), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    provider_response_deadline = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    customer = db.relationship("User", foreign_keys=[customer_id])
    provider = db.relationship("User", foreign_keys=[provider_id])
    service = db.relationship("ServiceOffering")

    __table_args__ = (
        # Held split is either not recorded yet or accounts for the whole total
        db.CheckConstraint(
            "(amount_held_for_provider IS NULL AND platform_fee_held IS NULL) OR "
            "(amount_held_for_provider + platform_fee_held = total_amount)",
            name="ck_booking_held_split",
        ),
        db.CheckConstraint("total_amount >= 0", name="ck_booking_total_non_negative"),
    )

    @property
    def service_title(self) -> str:
        return self.service.title if self.service else "service"

    def is_party(self, user_id: int) -> bool:
        return user_id in (self.customer_id, self.provider_id)

    def to_dict(self):
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "provider_id": self.provider_id,
            "service_id": self.service_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "amount_held_for_provider": self.amount_held_for_provider,
            "platform_fee_held": self.platform_fee_held,
            "provider_payout_amount": self.provider_payout_amount,
            "platform_fee_collected": self.platform_fee_collected,
            "provider_transfer_id": self.provider_transfer_id,
            "provider_paid_at": _iso(self.provider_paid_at),
            "refund_id": self.refund_id,
            "declined_reason": self.declined_reason,
            "cancelled_reason": self.cancelled_reason,
            "cancelled_at": _iso(self.cancelled_at),
            "provider_response_deadline": _iso(self.provider_response_deadline),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
