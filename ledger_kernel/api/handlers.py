"""
LedgerApi -- request handlers returning the ``{success, data|message}``
envelope.

Responsibility:
    Parses request payloads (decimal strings, ISO dates, UUIDs), gates each
    request through the authorization policy, delegates to LedgerService and
    maps every outcome onto an ApiResponse.  Handlers never raise.

Permission gate:
    Ledger requests are evaluated with ``evaluate(actor, resource, action)``
    against the configured module/action table.  Document delete and void
    only require that the actor may perform the verb at all; ownership is
    decided by the document workflow after the business-state checks, so a
    paid or closed-period document reports that reason even to admins.
"""

from dataclasses import asdict, is_dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.api.envelope import ApiResponse, from_exception, success
from ledger_kernel.domain.authorization import Actor, Decision, ResourceRef, evaluate
from ledger_kernel.domain.currency_policy import LifecycleStage
from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.exceptions import AuthorizationError, InvalidPayloadError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.ledger_service import ACCOUNTING_MODULE, LedgerService

logger = get_logger("api.handlers")


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _require(payload: dict[str, Any], field: str) -> Any:
    value = payload.get(field)
    if value is None or value == "":
        raise InvalidPayloadError(field, "is required")
    return value


def parse_date(value: Any, field: str = "date") -> date:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidPayloadError(field, "expected an ISO date string")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidPayloadError(field, f"{value!r} is not an ISO date") from exc


def parse_amount(value: Any, field: str) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise InvalidPayloadError(field, "expected a decimal amount")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidPayloadError(field, f"{value!r} is not a decimal amount") from exc
    if not amount.is_finite():
        raise InvalidPayloadError(field, "amount must be finite")
    return amount


def parse_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise InvalidPayloadError(field, f"{value!r} is not a valid id") from exc


def parse_lines(raw: Any) -> list[LineInput]:
    if not isinstance(raw, list) or not raw:
        raise InvalidPayloadError("lines", "expected a non-empty list")
    lines = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise InvalidPayloadError(f"lines[{index}]", "expected an object")
        account = item.get("account_id") or item.get("account")
        if not account:
            raise InvalidPayloadError(f"lines[{index}].account_id", "is required")
        lines.append(
            LineInput(
                account=str(account),
                debit=parse_amount(item.get("debit"), f"lines[{index}].debit"),
                credit=parse_amount(item.get("credit"), f"lines[{index}].credit"),
                description=item.get("description"),
            )
        )
    return lines


def to_data(value: Any) -> Any:
    """Make service results JSON-friendly for the envelope."""
    if is_dataclass(value) and not isinstance(value, type):
        data = asdict(value)
        for name in dir(type(value)):
            if isinstance(getattr(type(value), name, None), property):
                data[name] = getattr(value, name)
        return to_data(data)
    if isinstance(value, dict):
        return {str(k): to_data(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_data(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class LedgerApi:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger

    def _authorize(
        self, actor: Actor, module: str, action: str, owner_id: str | None = None
    ) -> None:
        decision = evaluate(
            actor, ResourceRef(module, owner_id), action, self.ledger.settings.permissions
        )
        if decision is Decision.DENY:
            logger.warning(
                "request_denied",
                extra={"actor_id": actor.display_id, "action": action, "resource_module": module},
            )
            raise AuthorizationError(actor.id, action, module)

    def _may_attempt(self, actor: Actor, module: str, action: str) -> None:
        """Permission to perform ``action`` on a document the actor owns."""
        self._authorize(actor, module, action, owner_id=actor.id)

    def _handle(self, fn, *args, status: int = 200, **kwargs) -> ApiResponse:
        try:
            return success(to_data(fn(*args, **kwargs)), status)
        except Exception as exc:  # every failure becomes an envelope
            return from_exception(exc)

    # -- journal entries ------------------------------------------------

    def post_journal_entry(
        self, payload: Any, actor: Actor, ip_address: str | None = None
    ) -> ApiResponse:
        def run():
            if not isinstance(payload, dict):
                raise InvalidPayloadError("payload", "expected an object")
            self._authorize(actor, ACCOUNTING_MODULE, "create")
            description = str(_require(payload, "description"))
            entry_date = parse_date(_require(payload, "date"))
            lines = parse_lines(payload.get("lines"))
            common = dict(
                actor=actor,
                reference_type=payload.get("reference_type"),
                reference_id=payload.get("reference_id"),
                metadata=payload.get("metadata"),
                ip_address=ip_address,
            )
            transaction_currency = payload.get("transaction_currency")
            if transaction_currency:
                return self.ledger.post_foreign_entry(
                    description,
                    entry_date,
                    lines,
                    transaction_currency=str(transaction_currency),
                    user_requested=bool(payload.get("convert", False)),
                    **common,
                )
            return self.ledger.post_entry(
                description, entry_date, lines, currency=payload.get("currency"), **common
            )

        with LogContext.bind(actor_id=actor.display_id):
            return self._handle(run, status=201)

    def reverse_journal_entry(
        self, entry_id: Any, actor: Actor, payload: dict[str, Any] | None = None
    ) -> ApiResponse:
        def run():
            payload_ = payload or {}
            parsed_id = parse_uuid(entry_id, "entry_id")
            entry = self.ledger.get_entry(parsed_id)
            self._authorize(actor, ACCOUNTING_MODULE, "reverse", owner_id=entry.created_by)
            reversal_date = payload_.get("date")
            return self.ledger.reverse_entry(
                parsed_id,
                actor=actor,
                reason=str(payload_.get("reason") or "reversed"),
                reversal_date=parse_date(reversal_date) if reversal_date else None,
            )

        return self._handle(run, status=201)

    def get_journal_entry(self, entry_id: Any, actor: Actor) -> ApiResponse:
        def run():
            self._authorize(actor, ACCOUNTING_MODULE, "view")
            return self.ledger.get_entry(parse_uuid(entry_id, "entry_id"))

        return self._handle(run)

    # -- documents ------------------------------------------------------

    def delete_document(
        self, document_id: Any, actor: Actor, ip_address: str | None = None
    ) -> ApiResponse:
        def run():
            parsed_id = parse_uuid(document_id, "document_id")
            document = self.ledger.get_document(parsed_id)
            self._may_attempt(actor, document.module, "delete")
            state = self.ledger.delete_document(parsed_id, actor=actor, ip_address=ip_address)
            return {"document_id": parsed_id, "state": state}

        return self._handle(run)

    def void_document(
        self, document_id: Any, actor: Actor, ip_address: str | None = None
    ) -> ApiResponse:
        def run():
            parsed_id = parse_uuid(document_id, "document_id")
            document = self.ledger.get_document(parsed_id)
            self._may_attempt(actor, document.module, "void")
            state = self.ledger.reverse_document(parsed_id, actor=actor, ip_address=ip_address)
            return {"document_id": parsed_id, "state": state}

        return self._handle(run)

    def post_sale_invoice(self, payload: Any, actor: Actor) -> ApiResponse:
        def run():
            if not isinstance(payload, dict):
                raise InvalidPayloadError("payload", "expected an object")
            self._authorize(actor, "sales", "create")
            number = str(_require(payload, "document_number"))
            invoice_date = parse_date(_require(payload, "date"))
            net_amount = parse_amount(_require(payload, "net_amount"), "net_amount")
            accounts = {
                key: str(payload[key])
                for key in ("receivable_account", "revenue_account")
                if payload.get(key)
            }
            document_id, posted = self.ledger.post_sale_invoice(
                number, invoice_date, net_amount, actor=actor, **accounts
            )
            return {"document_id": document_id, "entry": posted}

        with LogContext.bind(actor_id=actor.display_id):
            return self._handle(run, status=201)

    # -- fiscal periods -------------------------------------------------

    def close_period(self, period_id: Any, actor: Actor) -> ApiResponse:
        def run():
            self._authorize(actor, ACCOUNTING_MODULE, "edit")
            parsed_id = parse_uuid(period_id, "period_id")
            return {"period_id": parsed_id, "status": self.ledger.close_period(parsed_id, actor=actor)}

        return self._handle(run)

    def lock_period(self, period_id: Any, actor: Actor) -> ApiResponse:
        def run():
            self._authorize(actor, ACCOUNTING_MODULE, "edit")
            parsed_id = parse_uuid(period_id, "period_id")
            return {"period_id": parsed_id, "status": self.ledger.lock_period(parsed_id, actor=actor)}

        return self._handle(run)

    # -- reporting ------------------------------------------------------

    def account_balance(self, code: str, actor: Actor, as_of: Any = None) -> ApiResponse:
        def run():
            self._authorize(actor, ACCOUNTING_MODULE, "view")
            return self.ledger.account_balance(
                code, parse_date(as_of, "as_of") if as_of else None
            )

        return self._handle(run)

    def trial_balance(self, actor: Actor, as_of: Any = None) -> ApiResponse:
        def run():
            self._authorize(actor, ACCOUNTING_MODULE, "view")
            report = self.ledger.trial_balance(parse_date(as_of, "as_of") if as_of else None)
            return {
                "as_of": report.as_of,
                "rows": report.rows,
                "total_debits": report.total_debits,
                "total_credits": report.total_credits,
                "is_balanced": report.is_balanced,
            }

        return self._handle(run)

    # -- currency -------------------------------------------------------

    def convert(self, payload: Any, actor: Actor) -> ApiResponse:
        def run():
            if not isinstance(payload, dict):
                raise InvalidPayloadError("payload", "expected an object")
            self._authorize(actor, ACCOUNTING_MODULE, "view")
            stage = payload.get("stage", LifecycleStage.POSTING.value)
            try:
                stage = LifecycleStage(stage)
            except ValueError as exc:
                raise InvalidPayloadError("stage", f"{stage!r} is not a lifecycle stage") from exc
            result = self.ledger.convert(
                parse_amount(_require(payload, "amount"), "amount"),
                str(_require(payload, "currency")),
                parse_date(_require(payload, "date")),
                stage=stage,
                user_requested=bool(payload.get("user_requested", False)),
                actor=actor,
            )
            data = to_data(result)
            data["label"] = result.decision.label
            return data

        return self._handle(run)
