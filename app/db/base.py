# app/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All pharmacy ledger tables inherit from this."""
    pass


def import_models() -> None:
    """Import every model module so metadata is complete for create_all()."""
    from app.models import (  # noqa: F401
        audit,
        pharmacy_stock,
        pharmacy_intent,
        pharmacy_sales,
    )
