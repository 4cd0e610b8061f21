"""
Settings, logging setup and table bootstrap.
"""
import logging

from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.core.logging import configure_logging
from app.db.base import Base, import_models
from app.db import init_db
from app.db.session import make_engine


class TestSettings:

    def test_database_url_wins(self):
        s = Settings(DATABASE_URL="sqlite:///./ledger.db")
        assert s.SQLALCHEMY_DATABASE_URI == "sqlite:///./ledger.db"

    def test_mysql_uri_is_quoted(self):
        s = Settings(
            DATABASE_URL="",
            MYSQL_USER="hims",
            MYSQL_PASSWORD="p@ss:word",
            MYSQL_HOST="db",
            MYSQL_PORT=3307,
            MYSQL_DB="pharmacy",
        )
        assert s.SQLALCHEMY_DATABASE_URI == "mysql+pymysql://hims:p%40ss%3Aword@db:3307/pharmacy?charset=utf8mb4"


class TestLogging:

    def test_configure_is_idempotent(self):
        root = logging.getLogger()
        before = list(root.handlers)
        configure_logging("WARNING")
        configure_logging("INFO")
        assert root.handlers == before


class TestInitDb:

    def test_run_creates_ledger_tables(self):
        eng = make_engine("sqlite://", poolclass=StaticPool)
        try:
            tables = init_db.run(eng=eng)
        finally:
            eng.dispose()

        assert {
            "pharmacy_medications",
            "pharmacy_medicine_batches",
            "pharmacy_stock_receipts",
            "pharmacy_stock_write_offs",
            "pharmacy_intent_medicines",
            "pharmacy_moved_medicines",
            "pharmacy_sale_transactions",
            "pharmacy_sale_batch_lines",
            "audit_logs",
        } <= tables

    def test_every_table_declares_innodb_utf8mb4(self):
        import_models()
        for table in Base.metadata.sorted_tables:
            opts = table.dialect_kwargs
            assert opts.get("mysql_engine") == "InnoDB", table.name
            assert opts.get("mysql_charset") == "utf8mb4", table.name
            assert opts.get("mysql_collate") == "utf8mb4_unicode_ci", table.name
