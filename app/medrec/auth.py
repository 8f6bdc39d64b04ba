"""
Principal resolution for inbound requests.

Login, passwords and token issuance belong to the identity service in front
of this app; by the time a request reaches us the signed session already
carries `principal_id`.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify, request, session

from app.medrec.db import db_session
from app.medrec.models import Principal


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    principal_id = session.get("principal_id")
    if not principal_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(Principal, int(principal_id))
        if not user or not user.is_active:
            session.pop("principal_id", None)
            g.current_user = None
            return
        g.current_user = user
    except (TypeError, ValueError):
        session.pop("principal_id", None)
        g.current_user = None
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("principal_id", None)
        g.current_user = None


def current_principal_id() -> str | None:
    user: Principal | None = getattr(g, "current_user", None)
    return user.principal_id if user else None


def require_principal(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if current_principal_id() is None:
            return jsonify({"error": "unauthenticated", "message": "Not authorized"}), 401
        return fn(*args, **kwargs)

    return wrapped
