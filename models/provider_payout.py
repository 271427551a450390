from datetime import datetime
from models.db import db

class ProviderPayout(db.Model):
    """Append-only ledger: one row per booking whose payout transfer succeeded."""

    __tablename__ = "provider_payouts"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, unique=True, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    transfer_id = db.Column(db.String(255), nullable=False, unique=True)
    amount = db.Column(db.Integer, nullable=False)  # minor units
    commission_amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="GBP")

    status = db.Column(db.String(20), nullable=False, default="pending")  # pending, completed
    expected_payout_date = db.Column(db.Date, nullable=True)
    actual_payout_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        from services.commission import to_decimal_string

        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "transfer_id": self.transfer_id,
            "amount": self.amount,
            "amount_display": to_decimal_string(self.amount),
            "commission_amount": self.commission_amount,
            "currency": self.currency,
            "status": self.status,
            "expected_payout_date": self.expected_payout_date.isoformat() if self.expected_payout_date else None,
            "actual_payout_date": self.actual_payout_date.isoformat() if self.actual_payout_date else None,
            "created_at": self.created_at.isoformat(),
        }
