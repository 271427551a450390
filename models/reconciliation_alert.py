from datetime import datetime
from models.db import db

class ReconciliationAlert(db.Model):
    """
    Raised when the processor moved money but our booking row does not say so.
    Stays open until an operator resolves it.
    """

    __tablename__ = "reconciliation_alerts"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, nullable=False, index=True)

    # transfer_unrecorded, refund_unrecorded, duplicate_transfer
    kind = db.Column(db.String(40), nullable=False)
    external_id = db.Column(db.String(255), nullable=True)  # Stripe transfer/refund id
    amount = db.Column(db.Integer, nullable=True)
    detail = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="open", index=True)  # open, resolved
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resolved_by = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "kind": self.kind,
            "external_id": self.external_id,
            "amount": self.amount,
            "detail": self.detail,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
        }
