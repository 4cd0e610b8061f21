# FILE: app/services/ledger_errors.py
"""
Typed errors raised by the pharmacy ledger services.

Every error carries:
  - code        machine-readable, stable across message rewording
  - status_code HTTP status the API layer answers with
  - details     structured data (field list, quantities) for the caller

Callers should catch by type, never by message text.

    LedgerError
    +-- ValidationError        malformed / missing input (lists every violation)
    +-- NotFound               unknown medication / allocation / batch
    +-- DuplicateMedication    (name, manufacturer) already active -> restock instead
    +-- DuplicateBatch         batch number already registered for the medication
    +-- InsufficientStock      requested quantity exceeds availability
    +-- InvalidQuantity        zero / negative / exceeds current quantity
    +-- ConsistencyError       cached counters disagree with the ledgers
    +-- ConcurrentUpdate       optimistic version check lost a race
    +-- IdempotencyConflict    idempotency key reused with a different payload
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class LedgerError(RuntimeError):
    code: str = "LEDGER_ERROR"
    status_code: int = 400

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"msg": self.message, "code": self.code, "details": self.details}


class ValidationError(LedgerError):
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, violations: List[Dict[str, str]]):
        self.violations = list(violations)
        msg = "; ".join(f"{v['field']}: {v['message']}" for v in self.violations)
        super().__init__(msg or "Invalid input", details=self.violations)

    @property
    def fields(self) -> List[str]:
        return [v["field"] for v in self.violations]


class NotFound(LedgerError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, kind: str, key: Any):
        super().__init__(f"{kind} {key!s} not found", details={"kind": kind, "key": str(key)})
        self.kind = kind
        self.key = key


class DuplicateMedication(LedgerError):
    code = "DUPLICATE_MEDICATION"
    status_code = 409

    def __init__(self, name: str, manufacturer: str, existing_id: Optional[int] = None):
        super().__init__(
            f"Active medication '{name}' by '{manufacturer}' already exists; restock it instead.",
            details={"name": name, "manufacturer": manufacturer, "existing_id": existing_id},
        )
        self.existing_id = existing_id


class DuplicateBatch(LedgerError):
    code = "DUPLICATE_BATCH"
    status_code = 409

    def __init__(self, medication_id: int, batch_number: str):
        super().__init__(
            f"Batch '{batch_number}' already registered for medication {medication_id}.",
            details={"medication_id": medication_id, "batch_number": batch_number},
        )
        self.medication_id = medication_id
        self.batch_number = batch_number


class InsufficientStock(LedgerError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, requested: int, available: int, *, scope: str = "available stock"):
        super().__init__(
            f"quantity must be > 0 and <= {available} ({scope}); requested {requested}",
            details={"requested": requested, "available": available, "scope": scope},
        )
        self.requested = requested
        self.available = available


class InvalidQuantity(LedgerError):
    code = "INVALID_QUANTITY"
    status_code = 400

    def __init__(self, message: str, *, quantity: Any = None, limit: Any = None):
        super().__init__(message, details={"quantity": quantity, "limit": limit})
        self.quantity = quantity
        self.limit = limit


class ConsistencyError(LedgerError):
    code = "CONSISTENCY_ERROR"
    status_code = 409

    def __init__(self, medication_id: int, drift: Dict[str, Any]):
        parts = ", ".join(f"{k}={v}" for k, v in drift.items())
        super().__init__(
            f"Ledger drift for medication {medication_id}: {parts}",
            details={"medication_id": medication_id, **drift},
        )
        self.medication_id = medication_id
        self.drift = drift


class ConcurrentUpdate(LedgerError):
    code = "CONCURRENT_UPDATE"
    status_code = 409


class IdempotencyConflict(LedgerError):
    code = "IDEMPOTENCY_CONFLICT"
    status_code = 409

    def __init__(self, key: str, existing_id: int):
        super().__init__(
            f"Idempotency key '{key}' was already used for a different sale ({existing_id}).",
            details={"idempotency_key": key, "existing_sale_id": existing_id},
        )
        self.key = key
        self.existing_id = existing_id


class ViolationCollector:
    """Accumulates field violations so a caller sees the complete list at once."""

    def __init__(self) -> None:
        self.violations: List[Dict[str, str]] = []

    def add(self, field: str, message: str) -> None:
        self.violations.append({"field": field, "message": message})

    def check(self, ok: bool, field: str, message: str) -> None:
        if not ok:
            self.add(field, message)

    def raise_if_any(self) -> None:
        if self.violations:
            raise ValidationError(self.violations)
