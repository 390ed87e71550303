# Overview: Flask API routes for customer balances; read, rebuild and verify.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import ensure_store_access, require_auth
from ..extensions import db
from ..services import balance_service


balances_bp = Blueprint("balances", __name__, url_prefix="/api/balances")


@balances_bp.get("/<int:customer_id>/<int:store_id>")
@require_auth
def get_balance_route(customer_id: int, store_id: int):
    ensure_store_access(store_id)
    balance = balance_service.get_balance(db.session, customer_id, store_id)
    return jsonify(balance.to_dict()), 200


@balances_bp.post("/<int:customer_id>/<int:store_id>/rebuild")
@require_auth
def rebuild_balance_route(customer_id: int, store_id: int):
    """Recompute the balance row from the full entry history. Idempotent."""
    ensure_store_access(store_id)
    balance = balance_service.rebuild_balance(db.session, customer_id, store_id)
    current_app.logger.info(
        "Balance rebuilt for customer_id=%s store_id=%s by owner id=%s",
        customer_id, store_id, g.current_owner_id,
    )
    return jsonify(balance.to_dict()), 200


@balances_bp.get("/<int:customer_id>/<int:store_id>/verify")
@require_auth
def verify_balance_route(customer_id: int, store_id: int):
    """
    Compare the stored row with the fold of the entries.

    Returns 200 when consistent and 409 (kind "consistency", with both
    views) when the row has drifted. Use the rebuild route to repair.
    """
    ensure_store_access(store_id)
    balance = balance_service.verify_balance(db.session, customer_id, store_id)
    return jsonify({"consistent": True, "balance": balance.to_dict()}), 200
