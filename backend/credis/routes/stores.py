# Overview: Flask API routes for stores and customers; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import ensure_store_access, require_auth
from ..extensions import db
from ..services import store_service
from ..validation import optional_int, parse_bool, require_json_object


stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@stores_bp.post("")
@require_auth
def create_store():
    """
    Create a store and assign the calling owner to it.

    An owner belongs to at most one store; a second create returns 409.
    """
    data = require_json_object(request.get_json(silent=True))
    store = store_service.create_store(
        db.session,
        name=data.get("name"),
        address=data.get("address"),
        phone=data.get("phone"),
        owner_id=g.current_owner_id,
    )
    g.store_id = store.id
    return jsonify(store.to_dict()), 201


@stores_bp.get("/<int:store_id>")
@require_auth
def get_store(store_id: int):
    ensure_store_access(store_id)
    store = store_service.get_store(db.session, store_id)
    return jsonify(store.to_dict()), 200


@stores_bp.post("/<int:store_id>/customers")
@require_auth
def create_customer(store_id: int):
    ensure_store_access(store_id)
    data = require_json_object(request.get_json(silent=True))
    customer = store_service.create_customer(
        db.session,
        store_id,
        name=data.get("name"),
        phone=data.get("phone"),
        email=data.get("email"),
        credit_limit_cents=optional_int(data.get("credit_limit_cents"), "credit_limit_cents") or 0,
    )
    return jsonify(customer.to_dict()), 201


@stores_bp.get("/<int:store_id>/customers")
@require_auth
def list_customers(store_id: int):
    ensure_store_access(store_id)
    include_inactive = parse_bool(request.args.get("include_inactive"))
    customers = store_service.list_customers(db.session, store_id, include_inactive=include_inactive)
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@stores_bp.delete("/<int:store_id>/customers/<int:customer_id>")
@require_auth
def deactivate_customer(store_id: int, customer_id: int):
    """Soft delete. Ledger history and balance are kept."""
    ensure_store_access(store_id)
    customer = store_service.deactivate_customer(db.session, customer_id, store_id=store_id)
    return jsonify(customer.to_dict()), 200
