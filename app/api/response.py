from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.services.ledger_errors import LedgerError


def _respond(payload: Dict[str, Any], status_code: int) -> JSONResponse:
    # Decimal / date / enum values in ledger rows need encoding first
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def ok(
    data: Any = None,
    *,
    meta: Optional[Dict[str, Any]] = None,
    status_code: int = 200,
) -> JSONResponse:
    """
    {"ok": true, "data": ..., "meta": {...}}

    meta is only present when given (e.g. {"replayed": true} on a sale retry).
    """
    payload: Dict[str, Any] = {"ok": True, "data": data}
    if meta is not None:
        payload["meta"] = meta
    return _respond(payload, status_code)


def err(
    msg: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """{"ok": false, "error": {"msg": ..., "code": ..., "details": ...}}"""
    return _respond(
        {"ok": False, "error": {"msg": msg, "code": code, "details": details}},
        status_code,
    )


def ledger_err(e: LedgerError) -> JSONResponse:
    """Error envelope for a ledger rule violation; HTTP status comes from the error class."""
    return err(e.message, status_code=e.status_code, code=e.code, details=e.details)
