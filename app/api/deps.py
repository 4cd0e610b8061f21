# app/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Header

from app.db.session import get_db  # noqa: F401  (re-exported for routers)


def current_actor(x_user: Optional[str] = Header(default=None)) -> str:
    """
    Who is acting. Authentication lives in front of this service;
    the gateway forwards the user name in X-User.
    """
    actor = (x_user or "").strip()
    return actor or "system"
