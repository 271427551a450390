from datetime import datetime

from flask import Blueprint, jsonify, request, g

from models import db
from models.notification import Notification
from utils.auth_context import login_required

notifications_bp = Blueprint("notifications", __name__, url_prefix="/notifications")


@notifications_bp.get("/me")
@login_required
def my_notifications():
    q = Notification.query.filter_by(user_id=g.user.id)
    if request.args.get("unread") == "true":
        q = q.filter(Notification.read_at.is_(None))
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(100).all()
    return jsonify([n.to_dict() for n in rows]), 200


@notifications_bp.post("/<int:notification_id>/read")
@login_required
def mark_read(notification_id: int):
    n = db.session.get(Notification, notification_id)
    if not n or n.user_id != g.user.id:
        return jsonify(error="Notification not found"), 404

    if n.read_at is None:
        n.read_at = datetime.utcnow()
        db.session.commit()
    return jsonify(n.to_dict()), 200
