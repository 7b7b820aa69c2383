import atexit
import logging
import os
from datetime import datetime, timezone

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from coordinator import StatEngine
from decay_api import decay_api
from decay_worker import DecayTicker
from extensions import db, limiter
from ledger_api import ledger_api
from persistence import build_gateway

load_dotenv()

logger = logging.getLogger(__name__)


def _is_production() -> bool:
    return bool(os.getenv("RENDER")) or os.getenv("FLASK_ENV") == "production"


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        if os.getenv("RENDER") == "true":
            raise RuntimeError("DATABASE_URL missing on Render; refusing to use SQLite.")
        url = "sqlite:///stat_ledger.db"
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def _configure_logging():
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(config=None):
    """Build the Flask app and its StatEngine.

    ``config`` overrides app.config; it may also carry ``CLOCK`` (an object with
    ``now()``) to drive the engine from a test clock.
    """
    _configure_logging()
    app = Flask(__name__)

    # --- Secret key (dev fallback refused in production) ---
    secret_key = os.getenv("SECRET_KEY") or os.getenv("FLASK_SECRET_KEY") or "dev-secret-key-change-me"
    if _is_production() and secret_key.startswith("dev-secret-key-change"):
        raise RuntimeError("SECRET_KEY must be set to a strong random value in production.")
    app.config["SECRET_KEY"] = secret_key

    app.config["SQLALCHEMY_DATABASE_URI"] = _database_url()
    app.config["STATE_BACKEND"] = os.getenv("STATE_BACKEND", "sql")
    app.config["REDIS_URL"] = os.getenv("REDIS_URL")
    app.config["STATE_KEY_PREFIX"] = os.getenv("STATE_KEY_PREFIX", "")
    app.config["DECAY_TICK_SECONDS"] = int(os.getenv("DECAY_TICK_SECONDS", "60"))
    app.config["DECAY_TICKER_ENABLED"] = os.getenv("DECAY_TICKER_ENABLED", "1") == "1"
    app.config["ASYNC_SAVES"] = os.getenv("ASYNC_SAVES", "0") == "1"
    app.config["RATELIMIT_STORAGE_URI"] = os.getenv("RATE_LIMIT_STORAGE_URL", "memory://")
    app.config["CLOCK"] = None
    if config:
        app.config.update(config)

    if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {"pool_recycle": 300, "pool_pre_ping": True})

    # Render terminates TLS at a single proxy hop.
    if _is_production():
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    db.init_app(app)
    limiter.init_app(app)
    CORS(app)

    app.register_blueprint(ledger_api)
    app.register_blueprint(decay_api)

    with app.app_context():
        import models_blobs  # noqa: F401
        db.create_all()

    gateway = build_gateway(
        app.config["STATE_BACKEND"],
        app=app,
        redis_url=app.config["REDIS_URL"],
        prefix=app.config["STATE_KEY_PREFIX"],
    )
    engine = StatEngine(gateway, clock=app.config["CLOCK"], async_saves=app.config["ASYNC_SAVES"])
    engine.start()
    app.extensions["stat_engine"] = engine

    ticker = None
    if app.config["DECAY_TICKER_ENABLED"]:
        ticker = DecayTicker(engine, interval=app.config["DECAY_TICK_SECONDS"])
        ticker.start()
    app.extensions["decay_ticker"] = ticker

    def _shutdown():
        if ticker is not None:
            ticker.stop()
        engine.close()

    app.extensions["stat_engine_shutdown"] = _shutdown
    # Test apps are torn down by their fixtures.
    if not app.config.get("TESTING"):
        atexit.register(_shutdown)

    @app.get("/healthz")
    def healthz():
        return jsonify({
            "ok": True,
            "time": datetime.now(timezone.utc).isoformat(),
            "backend": app.config["STATE_BACKEND"],
            "ticker": bool(ticker and ticker.running),
        })

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_ENV", "development") == "development"

    app = create_app()
    print("=" * 60)
    print("Stat Ledger & Decay Engine")
    print("=" * 60)
    print(f"State backend: {app.config['STATE_BACKEND']}")
    print(f"Categories: http://localhost:{port}/api/categories")
    print(f"Decay settings: http://localhost:{port}/api/decay/settings")
    print("=" * 60)

    # The reloader would start a second engine (and ticker) on the same store.
    app.run(debug=debug, port=port, use_reloader=False)
