"""FastAPI routes exposing the ChoreBank operations as JSON endpoints."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..exceptions import (
    ChoreBankError,
    ConcurrencyConflictError,
    NotFoundError,
    StorageFailureError,
    ValidationError,
)
from ..models import ChoreStatus, OutcomeResult, TransactionType, TriggerContext
from ..persistence import ChoreDefinition, ChoreLog, ChoreScheduleOverride, LedgerTransaction
from ..service import ChoreBank


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class OverrideRequest(BaseModel):
    chore_id: int
    chore_date: date
    actor_id: str
    assignee: Optional[str] = None


class MoveRequest(BaseModel):
    chore_id: int
    from_date: date
    to_date: date
    actor_id: str


class ChoreLogRequest(BaseModel):
    chore_id: int
    chore_date: date


class OutcomeRequest(BaseModel):
    status: ChoreStatus
    actor_id: str
    expected_version: int
    notes: Optional[str] = None


class HelpRequest(BaseModel):
    actor_id: str
    reason: str
    expected_version: int


class HelpResponse(BaseModel):
    guardian_id: str
    complete: bool
    expected_version: int


class ManualTransactionRequest(BaseModel):
    amount: str
    type: TransactionType
    description: str = ""
    actor_id: Optional[str] = None


class TransferRequest(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: str
    description: Optional[str] = None
    actor_id: Optional[str] = None


class EvaluateRequest(BaseModel):
    trigger: TriggerContext = TriggerContext.MANUAL


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------
def chore_payload(definition: ChoreDefinition) -> Dict[str, Any]:
    return {
        "id": definition.id,
        "name": definition.name,
        "icon": definition.icon,
        "assigned_user_id": definition.assigned_user_id,
        "earn_value": str(definition.earn_value),
        "penalty_value": str(definition.penalty_value),
        "schedule_type": definition.schedule_type.value,
        "active_days": definition.active_days,
        "weekly_target_count": definition.weekly_target_count,
        "auto_approve": definition.auto_approve,
        "sort_order": definition.sort_order,
    }


def override_payload(row: Optional[ChoreScheduleOverride]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {
        "id": row.id,
        "chore_id": row.chore_definition_id,
        "date": row.chore_date.isoformat(),
        "type": row.override_type.value,
        "assignee": row.override_assigned_user_id,
        "created_by": row.created_by,
    }


def log_payload(log: ChoreLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "chore_id": log.chore_definition_id,
        "date": log.chore_date.isoformat(),
        "status": log.status.value,
        "version": log.version,
        "completed_by": log.completed_by,
        "approved_by": log.approved_by,
        "help_reason": log.help_reason,
    }


def transaction_payload(row: LedgerTransaction) -> Dict[str, Any]:
    return {
        "id": row.id,
        "account_id": row.ledger_account_id,
        "chore_log_id": row.chore_log_id,
        "user_id": row.user_id,
        "transfer_group_id": row.transfer_group_id,
        "amount": str(row.amount),
        "type": row.type.value,
        "description": row.description,
        "date": row.transaction_date.isoformat(),
    }


def outcome_payload(result: OutcomeResult) -> Dict[str, Any]:
    return {
        "log_id": result.log_id,
        "status": result.status.value,
        "version": result.version,
        "transaction_id": result.transaction_id,
        "amount": str(result.amount) if result.amount is not None else None,
        "unlocked": [item.code for item in result.unlocked],
    }


_ERROR_STATUS = (
    (NotFoundError, 404),
    (ConcurrencyConflictError, 409),
    (ValidationError, 422),
    (StorageFailureError, 503),
)


def _status_for(exc: ChoreBankError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
def create_app(bank: ChoreBank) -> FastAPI:
    app = FastAPI(title="ChoreBank")
    app.state.bank = bank

    @app.exception_handler(ChoreBankError)
    async def chorebank_error(request: Request, exc: ChoreBankError) -> JSONResponse:
        return JSONResponse(
            {"error": type(exc).__name__, "detail": str(exc), "retryable": exc.retryable},
            status_code=_status_for(exc),
        )

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"status": "ok", "connected_clients": bank.registry.count()}

    @app.get("/chores")
    def chores_for_date(on: date = Query(..., alias="date"), user_id: Optional[str] = None) -> Dict[str, Any]:
        if user_id:
            chores = bank.get_chores_for_user_on_date(user_id, on)
        else:
            chores = bank.get_chores_for_date(on)
        return {"date": on.isoformat(), "chores": [chore_payload(item) for item in chores]}

    @app.get("/users/{user_id}/weekly-progress")
    def weekly_progress(user_id: str, on: date = Query(..., alias="date")) -> Dict[str, Any]:
        progress = bank.get_weekly_progress(user_id, on)
        return {"user_id": user_id, "progress": {str(key): item.as_dict() for key, item in progress.items()}}

    @app.post("/overrides/add")
    def add_override(body: OverrideRequest) -> Dict[str, Any]:
        row = bank.add_override(body.chore_id, body.chore_date, body.actor_id, assignee=body.assignee)
        return {"override": override_payload(row)}

    @app.post("/overrides/remove")
    def remove_override(body: OverrideRequest) -> Dict[str, Any]:
        row = bank.remove_override(body.chore_id, body.chore_date, body.actor_id)
        return {"override": override_payload(row)}

    @app.post("/overrides/move")
    def move_override(body: MoveRequest) -> Dict[str, Any]:
        row = bank.move_override(body.chore_id, body.from_date, body.to_date, body.actor_id)
        return {"override": override_payload(row)}

    @app.delete("/overrides/{override_id}")
    def delete_override(override_id: int) -> Dict[str, Any]:
        bank.delete_override(override_id)
        return {"deleted": override_id}

    @app.post("/chore-logs")
    def open_log(body: ChoreLogRequest) -> Dict[str, Any]:
        return {"log": log_payload(bank.get_or_create_log(body.chore_id, body.chore_date))}

    @app.post("/chore-logs/{log_id}/outcome")
    def record_outcome(log_id: int, body: OutcomeRequest) -> Dict[str, Any]:
        result = bank.record_chore_outcome(log_id, body.status, body.actor_id, body.expected_version, notes=body.notes)
        return outcome_payload(result)

    @app.post("/chore-logs/{log_id}/help")
    def request_help(log_id: int, body: HelpRequest) -> Dict[str, Any]:
        return outcome_payload(bank.request_help(log_id, body.actor_id, body.reason, body.expected_version))

    @app.post("/chore-logs/{log_id}/help/response")
    def respond_to_help(log_id: int, body: HelpResponse) -> Dict[str, Any]:
        result = bank.respond_to_help(log_id, body.guardian_id, body.complete, body.expected_version)
        return outcome_payload(result)

    @app.post("/accounts/{account_id}/transactions")
    def manual_transaction(account_id: int, body: ManualTransactionRequest) -> Dict[str, Any]:
        row = bank.create_manual_transaction(
            account_id, body.amount, body.type, body.description, actor_id=body.actor_id
        )
        return {"transaction": transaction_payload(row)}

    @app.get("/accounts/{account_id}/balance")
    def account_balance(account_id: int) -> Dict[str, Any]:
        return {"account_id": account_id, "balance": str(bank.balance(account_id))}

    @app.post("/transfers")
    def transfer(body: TransferRequest) -> Dict[str, Any]:
        outgoing, incoming = bank.transfer(
            body.from_account_id, body.to_account_id, body.amount, body.description, actor_id=body.actor_id
        )
        return {"transfer_group_id": outgoing.transfer_group_id, "legs": [transaction_payload(outgoing), transaction_payload(incoming)]}

    @app.get("/users/{user_id}/stats")
    def stats(user_id: str) -> Dict[str, Any]:
        result = bank.transaction_stats(user_id)
        return {
            "earnings": str(result.total_earnings),
            "deductions": str(result.total_deductions),
            "bonuses": str(result.total_bonuses),
            "penalties": str(result.total_penalties),
            "payouts": str(result.total_payouts),
            "adjustments": str(result.total_adjustments),
            "transfers_in": str(result.total_transfers_in),
            "transfers_out": str(result.total_transfers_out),
            "net_total": str(result.net_total),
            "count": result.transaction_count,
        }

    @app.post("/users/{user_id}/achievements/evaluate")
    def evaluate(user_id: str, body: EvaluateRequest) -> Dict[str, Any]:
        unlocked = bank.evaluate_achievements(user_id, body.trigger)
        return {"unlocked": [{"code": item.code, "name": item.name} for item in unlocked]}

    return app


def app_factory() -> FastAPI:
    """Entry point for ``uvicorn chorebank.webapp:app_factory --factory``."""

    return create_app(ChoreBank.from_settings())


__all__ = ["app_factory", "create_app"]
