# Overview: Flask API routes for accounting ledger operations; parses input and returns JSON responses.

"""
Accounting Ledger API Routes

All amounts are integer minor units (`*_cents`).

SECURITY:
- VIEW_ACCOUNTS permission required for reads
- MANAGE_ACCOUNTS permission required for every mutation
- Mutations attribute rows to the authenticated user (created_by / created_by_name)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import ledger_service
from ..services.concurrency import RetryExhaustedError
from ..services.ledger_service import AccountNotFoundError, LedgerError
from ..validation import ValidationError, coerce_id, get_json_payload
from ..decorators import require_auth, require_permission


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/accounts")


def _ledger_error_response(exc: Exception, action: str):
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc), "type": type(exc).__name__}), 400
    if isinstance(exc, AccountNotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, RetryExhaustedError):
        return jsonify({"error": "The account changed concurrently; please retry"}), 409
    if isinstance(exc, LedgerError):
        return jsonify({"error": str(exc)}), 400
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ACCOUNTS
# =============================================================================

@ledger_bp.get("")
@require_auth
@require_permission("VIEW_ACCOUNTS")
def list_accounts_route():
    accounts = ledger_service.list_accounts()
    return jsonify({"items": [a.to_dict() for a in accounts]}), 200


@ledger_bp.post("")
@require_auth
@require_permission("MANAGE_ACCOUNTS")
def create_account_route():
    """
    Create a standard account.

    Request body:
    {
        "name": "Petty Cash",
        "initial_balance_cents": 10000,  (optional, default 0)
        "parent_id": 3  (optional)
    }
    """
    try:
        data = get_json_payload(request)
        parent_id = data.get("parent_id")
        if parent_id is not None:
            parent_id = coerce_id(parent_id, "parent_id")

        account = ledger_service.create_account(
            name=data.get("name"),
            initial_balance_cents=data.get("initial_balance_cents", 0),
            parent_id=parent_id,
            actor=g.current_user,
        )
        return jsonify({"account": account.to_dict()}), 201
    except Exception as e:
        return _ledger_error_response(e, "create account")


@ledger_bp.get("/tree")
@require_auth
@require_permission("VIEW_ACCOUNTS")
def account_tree_route():
    return jsonify(ledger_service.get_account_tree()), 200


@ledger_bp.get("/liquidity")
@require_auth
@require_permission("VIEW_ACCOUNTS")
def liquidity_route():
    return jsonify({"liquidity_cents": ledger_service.get_company_liquidity()}), 200


@ledger_bp.get("/receivable-parents")
@require_auth
@require_permission("VIEW_ACCOUNTS")
def receivable_parents_route():
    parents = ledger_service.list_receivable_parents()
    return jsonify({"items": [p.to_dict() for p in parents]}), 200


@ledger_bp.get("/<int:account_id>")
@require_auth
@require_permission("VIEW_ACCOUNTS")
def get_account_route(account_id: int):
    try:
        account = ledger_service.get_account(account_id)
        return jsonify({"account": account.to_dict()}), 200
    except Exception as e:
        return _ledger_error_response(e, "load account")


@ledger_bp.delete("/<int:account_id>")
@require_auth
@require_permission("MANAGE_ACCOUNTS")
def delete_account_route(account_id: int):
    try:
        deleted = ledger_service.delete_account(account_id)
        return jsonify({"deleted": True, "transactions_deleted": deleted}), 200
    except Exception as e:
        return _ledger_error_response(e, "delete account")


@ledger_bp.get("/<int:account_id>/verify")
@require_auth
@require_permission("VIEW_ACCOUNTS")
def verify_account_route(account_id: int):
    try:
        check = ledger_service.verify_account_history(account_id)
        return jsonify(check.to_dict()), 200
    except Exception as e:
        return _ledger_error_response(e, "verify account")


# =============================================================================
# TRANSACTIONS
# =============================================================================

@ledger_bp.get("/<int:account_id>/transactions")
@require_auth
@require_permission("VIEW_ACCOUNTS")
def list_transactions_route(account_id: int):
    """
    Transaction history for an account, newest first.

    Query params:
    - limit: max rows (1-500, default all)
    """
    try:
        limit = request.args.get("limit", type=int)
        if limit is not None:
            limit = max(1, min(limit, 500))
        rows = ledger_service.list_transactions(account_id, limit=limit)
        return jsonify({"items": [r.to_dict() for r in rows]}), 200
    except Exception as e:
        return _ledger_error_response(e, "list transactions")


@ledger_bp.post("/<int:account_id>/transactions")
@require_auth
@require_permission("MANAGE_ACCOUNTS")
def record_transaction_route(account_id: int):
    """
    Record an income or expense.

    Request body:
    {
        "type": "income" | "expense",
        "amount_cents": 3000,
        "note": "Office supplies"
    }
    """
    try:
        data = get_json_payload(request)
        tx = ledger_service.record_transaction(
            account_id=account_id,
            tx_type=data.get("type"),
            amount_cents=data.get("amount_cents"),
            note=data.get("note"),
            actor=g.current_user,
        )
        account = ledger_service.get_account(account_id)
        return jsonify({"transaction": tx.to_dict(), "account": account.to_dict()}), 201
    except Exception as e:
        return _ledger_error_response(e, "record transaction")


# =============================================================================
# RECEIVABLES
# =============================================================================

@ledger_bp.post("/receivables")
@require_auth
@require_permission("MANAGE_ACCOUNTS")
def create_receivable_route():
    """
    Issue an invoice as a receivable under a root standard account.

    Request body:
    {
        "customer_name": "Acme Corp",
        "invoice_amount_cents": 50000,
        "parent_id": 1
    }
    """
    try:
        data = get_json_payload(request)
        parent_id = coerce_id(data.get("parent_id"), "parent_id")

        # Only root standard accounts may hold receivables
        eligible = {a.id for a in ledger_service.list_receivable_parents()}
        if parent_id not in eligible:
            ledger_service.get_account(parent_id)
            raise ValidationError("Receivables must be created under a root standard account")

        receivable = ledger_service.create_receivable(
            customer_name=data.get("customer_name"),
            invoice_amount_cents=data.get("invoice_amount_cents"),
            parent_id=parent_id,
            actor=g.current_user,
        )
        parent = ledger_service.get_account(parent_id)
        return jsonify({"receivable": receivable.to_dict(), "parent": parent.to_dict()}), 201
    except Exception as e:
        return _ledger_error_response(e, "create receivable")


@ledger_bp.post("/receivables/<int:receivable_id>/settle")
@require_auth
@require_permission("MANAGE_ACCOUNTS")
def settle_receivable_route(receivable_id: int):
    """
    Request body:
    {
        "payment_amount_cents": 50000
    }
    """
    try:
        data = get_json_payload(request)
        settlement = ledger_service.settle_receivable(
            receivable_id=receivable_id,
            payment_amount_cents=data.get("payment_amount_cents"),
            actor=g.current_user,
        )
        return jsonify({
            "receivable": settlement.account.to_dict() if settlement.account else None,
            "transaction": settlement.transaction.to_dict(),
            "closed": settlement.closed,
        }), 200
    except Exception as e:
        return _ledger_error_response(e, "settle receivable")


# =============================================================================
# TRANSFERS
# =============================================================================

@ledger_bp.post("/transfers")
@require_auth
@require_permission("MANAGE_ACCOUNTS")
def transfer_route():
    """
    Request body:
    {
        "from_account_id": 1,
        "to_account_id": 2,
        "amount_cents": 4000,
        "note": "Float top-up"  (optional)
    }
    """
    try:
        data = get_json_payload(request)
        debit, credit = ledger_service.transfer(
            from_account_id=coerce_id(data.get("from_account_id"), "from_account_id"),
            to_account_id=coerce_id(data.get("to_account_id"), "to_account_id"),
            amount_cents=data.get("amount_cents"),
            note=data.get("note"),
            actor=g.current_user,
        )
        return jsonify({
            "transfer_id": debit.transfer_id,
            "debit": debit.to_dict(),
            "credit": credit.to_dict(),
        }), 201
    except Exception as e:
        return _ledger_error_response(e, "transfer between accounts")
