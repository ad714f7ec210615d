import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from io import BytesIO
from typing import Optional

from flask import Flask, current_app, jsonify, request, send_file, session

from rent_settle.config import Settings, configure_logging
from rent_settle.data_models import Expense
from rent_settle.engine import compute_monthly_split
from rent_settle.errors import InvalidInput, NotFound, RentSettleError, StoreFailure
from rent_settle.ledger import CERTIFICATE_BASES, LedgerService
from rent_settle.pdf import render_certificate_pdf, render_receipt_pdf
from rent_settle.receipts import PAYMENT_METHODS, ReceiptService, consecutive_periods
from rent_settle.serializers import (
    arrears_to_dict,
    certificate_to_dict,
    contract_to_dict,
    outcome_to_dict,
    receipt_to_dict,
    settlement_to_dict,
    split_to_dict,
)
from rent_settle.store import RentalStore, create_store_from_env
from rent_settle.utils import parse_date, parse_year_month, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """The logged-in user of the current request."""

    user: str
    last_activity: datetime
    expires_at: datetime


def create_app(settings: Optional[Settings] = None, store: Optional[RentalStore] = None) -> Flask:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.config["RENT_SETTLE_SETTINGS"] = settings
    app.config.setdefault("RENT_SETTLE_CLOCK", datetime.now)

    def clock() -> datetime:
        return app.config["RENT_SETTLE_CLOCK"]()

    store = store or create_store_from_env(settings.database_url)
    ledger = LedgerService(
        store, vat_rate=settings.vat_rate, earliest_period=settings.earliest_period, clock=clock
    )
    app.extensions["rent_settle"] = {
        "store": store,
        "ledger": ledger,
        "receipts": ReceiptService(ledger, clock=clock),
    }

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _settings() -> Settings:
    return current_app.config["RENT_SETTLE_SETTINGS"]


def _now() -> datetime:
    return current_app.config["RENT_SETTLE_CLOCK"]()


def _ledger() -> LedgerService:
    return current_app.extensions["rent_settle"]["ledger"]


def _receipts() -> ReceiptService:
    return current_app.extensions["rent_settle"]["receipts"]


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def login_required(view):
    """Reject anonymous or idle sessions; pass a ``SessionContext`` otherwise."""

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        user = session.get("user")
        last_seen = session.get("last_activity")
        if not user or last_seen is None:
            return _error("Login required", 401)
        timeout = timedelta(minutes=_settings().session_timeout_minutes)
        now = _now()
        if now - datetime.fromtimestamp(last_seen) > timeout:
            logger.info("Session of %s expired after inactivity", user)
            session.clear()
            return _error("Session expired", 401)
        session["last_activity"] = now.timestamp()
        ctx = SessionContext(user=user, last_activity=now, expires_at=now + timeout)
        return view(ctx, *args, **kwargs)

    return wrapper


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def _period(value, field: str):
    if not value:
        raise InvalidInput(f"Missing {field} (YYYY-MM)")
    dt = parse_year_month(str(value))
    return dt.month, dt.year


def _optional_date(value: Optional[str]):
    return parse_date(value) if value else None


def _optional_int(value, field: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid {field}: {value}") from exc


def _flag(value) -> bool:
    return str(value).lower() in ("1", "true", "yes")


def _pdf_response(data: bytes, filename: str):
    return send_file(BytesIO(data), mimetype="application/pdf", as_attachment=True, download_name=filename)


def _deductible(value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes"):
        return True
    if text in ("0", "false", "no"):
        return False
    raise InvalidInput(f"deductible must be true or false; got {value}")


def _expense_from_json(item) -> Expense:
    if not isinstance(item, dict) or not item.get("concept"):
        raise InvalidInput("Each expense needs a concept and an amount")
    return Expense(
        concept=str(item["concept"]),
        amount=to_decimal(item.get("amount", "")),
        deductible=_deductible(item.get("deductible", True)),
        description=item.get("description"),
    )


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(InvalidInput)
    def invalid_input(exc):
        return _error(str(exc), 400)

    @app.errorhandler(NotFound)
    def not_found(exc):
        return _error(str(exc), 404)

    @app.errorhandler(StoreFailure)
    def store_failure(exc):
        return _error("The data store is unavailable", 503)

    @app.errorhandler(RentSettleError)
    def other_error(exc):
        return _error(str(exc), 400)


def _register_routes(app: Flask) -> None:
    @app.post("/login")
    def login():
        data = _json_body()
        settings = _settings()
        if data.get("username") != settings.username or data.get("password") != settings.password:
            logger.warning("Rejected login for %r", data.get("username"))
            return _error("Invalid credentials", 401)
        session.clear()
        session["user"] = settings.username
        session["last_activity"] = _now().timestamp()
        return jsonify({"user": settings.username, "timeout_minutes": settings.session_timeout_minutes})

    @app.post("/logout")
    def logout():
        session.clear()
        return jsonify({"ok": True})

    @app.get("/contracts")
    @login_required
    def contracts(ctx: SessionContext):
        active_only = _flag(request.args.get("active", ""))
        rows = current_app.extensions["rent_settle"]["store"].list_contracts(active_only=active_only)
        return jsonify([contract_to_dict(c) for c in rows])

    @app.get("/contracts/<int:contract_id>/arrears")
    @login_required
    def contract_arrears(ctx: SessionContext, contract_id: int):
        summary = _ledger().arrears(contract_id, _optional_date(request.args.get("as_of")))
        return jsonify(arrears_to_dict(summary))

    @app.get("/contracts/<int:contract_id>/settlements")
    @login_required
    def contract_settlements(ctx: SessionContext, contract_id: int):
        return jsonify([settlement_to_dict(s) for s in _ledger().list_settlements(contract_id)])

    @app.post("/contracts/<int:contract_id>/settle")
    @login_required
    def settle(ctx: SessionContext, contract_id: int):
        data = _json_body()
        month, year = _period(data.get("period"), "period")
        ledger = _ledger()
        amount = data.get("amount")
        if amount is None:
            amount = ledger.contract(contract_id).monthly_rent
        settlement = ledger.settle_month(contract_id, month, year, amount, data.get("notes"))
        logger.info("%s settled contract %s for %s", ctx.user, contract_id, settlement.period)
        return jsonify(settlement_to_dict(settlement))

    @app.post("/contracts/<int:contract_id>/settle-range")
    @login_required
    def settle_range(ctx: SessionContext, contract_id: int):
        data = _json_body()
        from_month, from_year = _period(data.get("from"), "from")
        to_month, to_year = _period(data.get("to"), "to")
        ledger = _ledger()
        amount = data.get("amount")
        if amount is None:
            amount = ledger.contract(contract_id).monthly_rent
        outcomes = ledger.settle_range(contract_id, from_month, from_year, to_month, to_year, amount, data.get("notes"))
        failed = sum(1 for o in outcomes if not o.ok)
        return jsonify(
            {
                "outcomes": [outcome_to_dict(o) for o in outcomes],
                "settled": len(outcomes) - failed,
                "failed": failed,
            }
        )

    @app.post("/contracts/<int:contract_id>/unsettle")
    @login_required
    def unsettle(ctx: SessionContext, contract_id: int):
        data = _json_body()
        month, year = _period(data.get("period"), "period")
        removed = _ledger().unsettle_month(contract_id, month, year)
        return jsonify({"contract_id": contract_id, "period": f"{year:04d}-{month:02d}", "removed": removed})

    @app.get("/debts")
    @login_required
    def debts(ctx: SessionContext):
        show_all = _flag(request.args.get("all", ""))
        overview = _ledger().debts_overview(_optional_date(request.args.get("as_of")))
        rows = []
        for contract, summary in overview:
            if not summary.months_pending and not show_all:
                continue
            rows.append({"contract": contract_to_dict(contract), "arrears": arrears_to_dict(summary)})
        return jsonify(rows)

    @app.get("/owners/<int:owner_id>/certificate/<int:year>")
    @login_required
    def certificate(ctx: SessionContext, owner_id: int, year: int):
        basis = request.args.get("basis", "settlements")
        if basis not in CERTIFICATE_BASES:
            raise InvalidInput(f"Basis must be one of {', '.join(CERTIFICATE_BASES)}; got {basis}")
        result = _ledger().annual_certificate(owner_id, year, basis)
        if request.args.get("format") == "pdf":
            data = render_certificate_pdf(result, _settings().agency)
            return _pdf_response(data, f"certificate-{owner_id}-{year}.pdf")
        return jsonify(certificate_to_dict(result, basis))

    @app.post("/receipts")
    @login_required
    def issue_receipt(ctx: SessionContext):
        data = _json_body()
        contract_id = _optional_int(data.get("contract_id"), "contract_id")
        if contract_id is None:
            raise InvalidInput("Missing contract_id")
        month, year = _period(data.get("from"), "from")
        count = _optional_int(data.get("months", 1), "months")
        expenses = data.get("expenses") or []
        if not isinstance(expenses, list):
            raise InvalidInput("expenses must be a list")
        payment_method = data.get("payment_method")
        if payment_method and payment_method not in PAYMENT_METHODS:
            raise InvalidInput(f"Unknown payment method: {payment_method}")
        receipt = _receipts().issue(
            contract_id,
            consecutive_periods(month, year, count),
            expenses=[_expense_from_json(item) for item in expenses],
            number=data.get("number"),
            payment_method=payment_method,
            payment_reference=data.get("payment_reference"),
            notes=data.get("notes"),
        )
        return jsonify(receipt_to_dict(receipt)), 201

    @app.get("/receipts")
    @login_required
    def receipt_history(ctx: SessionContext):
        rows = _receipts().history(
            contract_id=_optional_int(request.args.get("contract_id"), "contract_id"),
            year=_optional_int(request.args.get("year"), "year"),
        )
        return jsonify([receipt_to_dict(r) for r in rows])

    @app.delete("/receipts/<int:receipt_id>")
    @login_required
    def delete_receipt(ctx: SessionContext, receipt_id: int):
        _receipts().delete(receipt_id)
        return jsonify({"deleted": receipt_id})

    @app.get("/receipts/<int:receipt_id>/pdf")
    @login_required
    def receipt_pdf(ctx: SessionContext, receipt_id: int):
        receipt = _receipts().get(receipt_id)
        contract = _ledger().contract(receipt.contract_id)
        data = render_receipt_pdf(receipt, contract, _settings().agency)
        return _pdf_response(data, f"{receipt.number}.pdf")

    @app.get("/split")
    @login_required
    def split(ctx: SessionContext):
        ledger = _ledger()
        contract_id = _optional_int(request.args.get("contract_id"), "contract_id")
        vat = request.args.get("vat")
        vat_rate = to_decimal(vat) if vat else ledger.vat_rate
        if contract_id is not None:
            contract = ledger.contract(contract_id)
            result = compute_monthly_split(contract.monthly_rent, ledger.fee_percent(contract), vat_rate)
        else:
            rent, fee = request.args.get("rent"), request.args.get("fee")
            if not rent or fee is None:
                raise InvalidInput("Either contract_id or both rent and fee are required")
            result = compute_monthly_split(to_decimal(rent), to_decimal(fee), vat_rate)
        return jsonify(split_to_dict(result))


if __name__ == "__main__":
    print("Starting rent ledger web API...")
    create_app().run(host="0.0.0.0", port=8710, debug=True)
