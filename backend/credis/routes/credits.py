# Overview: Flask API routes for credit transactions; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import current_store_id, ensure_store_access, require_auth
from ..errors import ValidationError
from ..extensions import db
from ..services import balance_service, ledger_service, query_service
from ..services.query_service import TransactionFilter
from ..validation import (
    coerce_int,
    optional_int,
    optional_text,
    parse_amount_cents,
    parse_datetime,
    require_json_object,
)

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive on both ends.

Every route is scoped to the caller's store; entries of other stores are
reported as not found.
"""

credits_bp = Blueprint("credits", __name__, url_prefix="/api/credits")

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 500


def _entry_with_balance(entry, balance):
    return {"transaction": entry.to_dict(), "balance": balance.to_dict()}


@credits_bp.post("")
@require_auth
def create_credit_route():
    """
    Record a credit given or a payment received.

    Body: customer_id, transaction_type, amount_cents (or decimal amount),
    optional transaction_date, items_description, journal_number.
    """
    data = require_json_object(request.get_json(silent=True))
    store_id = current_store_id()
    if data.get("store_id") is not None:
        ensure_store_access(coerce_int(data["store_id"], "store_id"))

    if data.get("customer_id") is None:
        raise ValidationError("customer_id is required")
    customer_id = coerce_int(data["customer_id"], "customer_id")

    entry = ledger_service.record_transaction(
        db.session,
        customer_id,
        store_id,
        parse_amount_cents(data),
        data.get("transaction_type"),
        transaction_date=parse_datetime(data.get("transaction_date"), "transaction_date"),
        items_description=optional_text(data, "items_description"),
        journal_number=optional_text(data, "journal_number", max_length=64),
        created_by_owner_id=g.current_owner_id,
    )
    balance = balance_service.get_balance(db.session, customer_id, store_id)
    return jsonify(_entry_with_balance(entry, balance)), 201


@credits_bp.get("")
@require_auth
def list_credits_route():
    args = request.args
    limit = optional_int(args.get("limit"), "limit")
    if limit is None:
        limit = DEFAULT_LIST_LIMIT
    limit = min(limit, MAX_LIST_LIMIT)

    filters = TransactionFilter(
        customer_id=optional_int(args.get("customer_id"), "customer_id"),
        store_id=current_store_id(),
        transaction_type=args.get("transaction_type") or None,
        start_date=parse_datetime(args.get("start_date"), "start_date"),
        end_date=parse_datetime(args.get("end_date"), "end_date"),
        min_amount_cents=optional_int(args.get("min_amount_cents"), "min_amount_cents"),
        max_amount_cents=optional_int(args.get("max_amount_cents"), "max_amount_cents"),
        ascending=(args.get("order") or "desc").lower() == "asc",
        limit=limit,
    )
    items = [entry.to_dict() for entry in query_service.list_transactions(db.session, filters)]
    return jsonify({"items": items, "count": len(items), "limit": limit}), 200


@credits_bp.get("/recent")
@require_auth
def recent_credits_route():
    limit = optional_int(request.args.get("limit"), "limit")
    if limit is None:
        limit = 10
    entries = query_service.recent_transactions(db.session, limit=limit, store_id=current_store_id())
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200


@credits_bp.get("/date-range")
@require_auth
def date_range_credits_route():
    start = parse_datetime(request.args.get("start_date"), "start_date")
    end = parse_datetime(request.args.get("end_date"), "end_date")
    entries = query_service.transactions_by_date_range(db.session, start, end, store_id=current_store_id())
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200


@credits_bp.get("/<int:entry_id>")
@require_auth
def get_credit_route(entry_id: int):
    entry = ledger_service.get_entry(db.session, entry_id, store_id=current_store_id())
    return jsonify(entry.to_dict()), 200


@credits_bp.patch("/<int:entry_id>")
@require_auth
def amend_credit_route(entry_id: int):
    """
    Administrative correction. The pair's balance is rebuilt from its
    entries in the same transaction and returned with the entry.
    """
    data = require_json_object(request.get_json(silent=True))
    changes = {}
    amount = parse_amount_cents(data, required=False)
    if amount is not None:
        changes["amount_cents"] = amount
    if "transaction_type" in data:
        changes["transaction_type"] = data["transaction_type"]
    if "transaction_date" in data:
        changes["transaction_date"] = parse_datetime(data["transaction_date"], "transaction_date")
    if "items_description" in data:
        changes["items_description"] = optional_text(data, "items_description")
    if "journal_number" in data:
        changes["journal_number"] = optional_text(data, "journal_number", max_length=64)

    entry, balance = ledger_service.amend_entry(
        db.session, entry_id, store_id=current_store_id(), **changes
    )
    return jsonify(_entry_with_balance(entry, balance)), 200


@credits_bp.delete("/<int:entry_id>")
@require_auth
def delete_credit_route(entry_id: int):
    balance = ledger_service.delete_entry(db.session, entry_id, store_id=current_store_id())
    return jsonify({"deleted": entry_id, "balance": balance.to_dict()}), 200


@credits_bp.get("/customer/<int:customer_id>/summary")
@require_auth
def customer_summary_route(customer_id: int):
    summary = query_service.customer_summary(db.session, customer_id, store_id=current_store_id())
    return jsonify(summary), 200


@credits_bp.get("/store/<int:store_id>/summary")
@require_auth
def store_summary_route(store_id: int):
    ensure_store_access(store_id)
    return jsonify(query_service.store_summary(db.session, store_id)), 200


@credits_bp.get("/store/<int:store_id>/outstanding")
@require_auth
def outstanding_route(store_id: int):
    ensure_store_access(store_id)
    rows = query_service.customers_with_outstanding_balance(
        db.session, store_id, limit=optional_int(request.args.get("limit"), "limit")
    )
    return jsonify({"items": rows, "count": len(rows)}), 200


@credits_bp.get("/store/<int:store_id>/overdue")
@require_auth
def overdue_route(store_id: int):
    ensure_store_access(store_id)
    rows = query_service.overdue_customers(
        db.session, store_id, overdue_days=optional_int(request.args.get("days"), "days")
    )
    return jsonify({"items": rows, "count": len(rows)}), 200


@credits_bp.get("/store/<int:store_id>/in-credit")
@require_auth
def in_credit_route(store_id: int):
    ensure_store_access(store_id)
    rows = query_service.customers_in_credit(db.session, store_id)
    return jsonify({"items": rows, "count": len(rows)}), 200
