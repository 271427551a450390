from flask import Blueprint, jsonify, request

from models.audit_log import AuditLog
from security.rbac import require_roles
from services import reconciliation
from utils.auth_context import current_actor

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.get("/reconciliation-alerts")
@require_roles("ADMIN")
def list_reconciliation_alerts():
    status = request.args.get("status")
    if status and status not in ("open", "resolved"):
        return jsonify(error="status must be open or resolved"), 400

    limit = request.args.get("limit", type=int) or 200
    rows = reconciliation.list_alerts(status=status, limit=max(1, min(limit, 500)))
    return jsonify([a.to_dict() for a in rows]), 200


@admin_bp.post("/reconciliation-alerts/<int:alert_id>/resolve")
@require_roles("ADMIN")
def resolve_reconciliation_alert(alert_id: int):
    alert = reconciliation.resolve_alert(alert_id, current_actor())
    return jsonify(alert.to_dict()), 200


@admin_bp.get("/audit-logs")
@require_roles("ADMIN")
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    q = AuditLog.query
    action = request.args.get("action")
    if action:
        q = q.filter_by(action=action)
    booking_id = request.args.get("booking_id", type=int)
    if booking_id is not None:
        q = q.filter_by(entity="booking", entity_id=str(booking_id))

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify([r.to_dict() for r in rows]), 200
