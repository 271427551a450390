import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.reconciliation_alert import ReconciliationAlert
from services.errors import InvalidState, NotFound
from utils.audit import log_event

logger = logging.getLogger(__name__)


def raise_alert(booking_id: int, kind: str, external_id: str | None = None, amount: int | None = None, detail: str | None = None):
    """
    Record that money moved at the processor without a matching booking update.
    Runs in its own transaction; the caller's failed one must already be rolled back.
    """
    logger.error(
        "Reconciliation needed: %s for booking %s (external id %s, amount %s): %s",
        kind, booking_id, external_id, amount, detail,
    )
    alert = ReconciliationAlert(
        booking_id=booking_id,
        kind=kind,
        external_id=external_id,
        amount=amount,
        detail=(detail or "")[:2000] or None,
    )
    try:
        db.session.add(alert)
        log_event(
            "RECONCILIATION_ALERT",
            entity="booking",
            entity_id=booking_id,
            metadata={"kind": kind, "external_id": external_id},
            commit=False,
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.critical(
            "Could not persist reconciliation alert %s for booking %s (external id %s)",
            kind, booking_id, external_id, exc_info=True,
        )
        return None
    return alert


def list_alerts(status: str | None = None, limit: int = 200):
    q = ReconciliationAlert.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(ReconciliationAlert.created_at.desc()).limit(limit).all()


def resolve_alert(alert_id: int, actor) -> ReconciliationAlert:
    alert = db.session.get(ReconciliationAlert, alert_id)
    if not alert:
        raise NotFound("Alert not found")
    if alert.status == "resolved":
        raise InvalidState("Alert already resolved")

    alert.status = "resolved"
    alert.resolved_at = datetime.utcnow()
    alert.resolved_by = actor.user_id
    log_event("RECONCILIATION_RESOLVED", user_id=actor.user_id, entity="reconciliation_alert", entity_id=alert.id, commit=False)
    db.session.commit()
    return alert
