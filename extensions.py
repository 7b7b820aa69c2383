from flask import request
from flask_limiter import Limiter
from flask_sqlalchemy import SQLAlchemy


def client_ip() -> str:
    """Return the best-effort client IP (first hop after ProxyFix)."""
    try:
        if request.access_route:
            return request.access_route[0]
    except Exception:
        pass
    return request.remote_addr or "0.0.0.0"


db = SQLAlchemy()

# Storage comes from RATELIMIT_STORAGE_URI at init_app time.
limiter = Limiter(client_ip)
