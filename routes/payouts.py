from flask import Blueprint, jsonify, g

from models.provider_payout import ProviderPayout
from security.rbac import require_roles

payouts_bp = Blueprint("payouts", __name__, url_prefix="/payouts")


@payouts_bp.get("/me")
@require_roles("PROVIDER")
def my_payouts():
    rows = (
        ProviderPayout.query
        .filter_by(provider_id=g.user.id)
        .order_by(ProviderPayout.created_at.desc())
        .limit(200)
        .all()
    )
    return jsonify(
        payouts=[p.to_dict() for p in rows],
        total_paid=sum(p.amount for p in rows if p.status == "completed"),
    ), 200
