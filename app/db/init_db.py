# app/db/init_db.py
from __future__ import annotations

import argparse

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from app.db.base import Base, import_models
from app.db.session import engine


def print_tables(eng: Engine) -> set:
    names = sorted(inspect(eng).get_table_names())
    print("Existing tables:", names)
    return set(names)


def run(fresh: bool = False, eng: Engine = engine) -> set:
    import_models()

    if fresh:
        print("WARNING: Dropping ALL ledger tables (dev only) …")
        Base.metadata.drop_all(bind=eng)

    print("Creating all missing tables …")
    Base.metadata.create_all(bind=eng)
    return print_tables(eng)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize the pharmacy ledger DB (create tables).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
