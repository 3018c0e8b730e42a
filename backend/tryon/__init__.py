import os
import subprocess
from pathlib import Path

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from tryon.errors import FulfilmentError
from tryon.extensions import cors, db, install_sqlite_write_lock, migrate
from tryon.models import User
from tryon.segments.segment_deliveries import deliveries_bp
from tryon.segments.segment_orders_api import orders_bp
from tryon.segments.segment_payment_webhooks import webhooks_bp
from tryon.segments.segment_reconciliation_admin import recon_bp
from tryon.segments.segment_ratings import ratings_bp
from tryon.segments.segment_wallet import admin_wallet_bp, transactions_bp, wallet_bp
from tryon.utils.observability import SERVICE_NAME, get_request_id, init_otel, init_sentry, install_request_observers

BACKEND_DIR = Path(__file__).resolve().parents[1]
PRODUCTION_ENVS = ("prod", "production")
TEST_ENVS = ("test", "testing")


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    """Integer setting from the environment, clamped to ``[minimum, maximum]``."""
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return min(max(value, minimum), maximum)


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in ("1", "true", "yes", "on")


def _git_sha() -> str:
    configured = (os.getenv("GIT_SHA") or "").strip()
    if configured:
        return configured
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=str(BACKEND_DIR), stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return "unknown"
    return out.decode().strip() or "unknown"


def _alembic_head() -> str:
    from alembic.config import Config
    from alembic.script import ScriptDirectory

    migrations_dir = BACKEND_DIR / "migrations"
    cfg = Config(str(migrations_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(migrations_dir))
    heads = ScriptDirectory.from_config(cfg).get_heads()
    return heads[0] if heads else "unknown"


def _check_production_settings() -> None:
    secret = (os.getenv("SECRET_KEY") or "").strip()
    if len(secret) < 16:
        raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
    if not (os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or "").strip():
        raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
    if not (os.getenv("PAYMENT_WEBHOOK_SECRET") or "").strip():
        raise RuntimeError("PAYMENT_WEBHOOK_SECRET must be set in production")


def _database_settings() -> tuple[str, dict]:
    url = (os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or "").strip()
    if not url:
        instance_dir = BACKEND_DIR / "instance"
        instance_dir.mkdir(parents=True, exist_ok=True)
        url = "sqlite:///" + (instance_dir / "tryon.db").as_posix()

    options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if url.startswith("sqlite"):
        # Writers queue on the database lock instead of failing fast.
        options["connect_args"] = {
            "timeout": _env_int("SQLITE_BUSY_TIMEOUT_SECONDS", 30, minimum=1, maximum=600),
            "check_same_thread": False,
        }
    else:
        options["pool_size"] = _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200)
        options["max_overflow"] = _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500)
        options["pool_timeout"] = _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300)
    return url, options


def _cors_origins(env: str) -> list[str]:
    configured = [o.strip() for o in (os.getenv("CORS_ORIGINS") or "").split(",") if o.strip()]
    if configured or env in PRODUCTION_ENVS:
        return configured
    return ["*"]


def _error_payload(code: str, message: str, status: int) -> dict:
    payload = {"ok": False, "error": code, "message": message, "status": int(status)}
    rid = get_request_id()
    if rid:
        payload["trace_id"] = rid
    return payload


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(FulfilmentError)
    def _fulfilment_error(error: FulfilmentError):
        payload = error.to_dict()
        rid = get_request_id()
        if rid:
            payload["trace_id"] = rid
        app.logger.info("request_rejected path=%s code=%s", request.path, error.code)
        return jsonify(payload), int(error.status_code)

    @app.errorhandler(HTTPException)
    def _http_error(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        return jsonify(_error_payload(error.name, error.description or error.name, status)), status

    @app.errorhandler(Exception)
    def _unhandled_error(error: Exception):
        db.session.rollback()
        app.logger.exception("unhandled_exception path=%s", request.path)
        return jsonify(_error_payload("InternalServerError", "Internal server error", 500)), 500


def _register_cli(app: Flask) -> None:
    @app.cli.command("create-user")
    @click.option("--email", "email", required=True)
    @click.option("--name", "name", default="")
    @click.option(
        "--role",
        "role",
        type=click.Choice(["buyer", "seller", "delivery", "admin"]),
        default="buyer",
        show_default=True,
    )
    def create_user(email: str, name: str, role: str):
        """Create a user, or change the role of an existing one."""
        email = (email or "").strip().lower()
        if not email:
            raise click.ClickException("--email is required.")
        u = User.query.filter_by(email=email).first()
        try:
            if u:
                u.role = role
            else:
                u = User(name=name or email.split("@")[0], email=email, role=role)
                db.session.add(u)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        click.echo(f"user_ok id={u.id} email={u.email} role={u.role}")

    @app.cli.command("issue-token")
    @click.argument("user_id", type=int)
    @click.option("--ttl", "ttl", type=int, default=60 * 60 * 24, show_default=True)
    def issue_token(user_id: int, ttl: int):
        """Print a bearer token for USER_ID."""
        from tryon.utils.jwt_utils import create_token

        u = db.session.get(User, int(user_id))
        if u is None:
            raise click.ClickException("User not found.")
        click.echo(create_token(int(u.id), role=u.normalized_role, ttl_seconds=ttl))


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("TRYON_ENV") or "dev").strip().lower()
    if env in PRODUCTION_ENVS:
        _check_production_settings()

    database_url, engine_options = _database_settings()
    app.config.update(
        SECRET_KEY=os.getenv("SECRET_KEY", "dev-secret"),
        SQLALCHEMY_DATABASE_URI=database_url,
        SQLALCHEMY_ENGINE_OPTIONS=engine_options,
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        OTP_MAX_ATTEMPTS=_env_int("OTP_MAX_ATTEMPTS", 0, minimum=0, maximum=1000),
        OTP_TTL_SECONDS=_env_int("OTP_TTL_SECONDS", 0, minimum=0, maximum=7 * 86400),
        PAYMENT_WEBHOOK_SECRET=(os.getenv("PAYMENT_WEBHOOK_SECRET") or "").strip(),
    )
    if "pool_size" in engine_options:
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
            engine_options["pool_recycle"],
        )

    cors.init_app(app, resources={r"/api/*": {"origins": _cors_origins(env)}})
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)
    with app.app_context():
        install_sqlite_write_lock(db.engine)
        if _env_flag("AUTO_CREATE_TABLES") or env in TEST_ENVS:
            db.create_all()
    init_otel(app, enabled=_env_flag("OTEL_ENABLED"))

    _register_error_handlers(app)
    for bp in (
        orders_bp,
        deliveries_bp,
        wallet_bp,
        transactions_bp,
        admin_wallet_bp,
        ratings_bp,
        webhooks_bp,
        recon_bp,
    ):
        app.register_blueprint(bp)

    @app.before_request
    def _reset_auth_context():
        g.auth_user_id = None
        g.auth_role = None

    @app.get("/api/health")
    def health():
        payload = {"ok": True, "service": SERVICE_NAME, "env": env, "db": "ok"}
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            app.logger.warning("health_db_failed err=%s", e)
            payload.update(ok=False, db="fail", db_error=str(e)[:300])
        try:
            payload["alembic_head"] = _alembic_head()
        except Exception as e:
            app.logger.info("alembic_head_unavailable err=%s", e)
            payload["alembic_head"] = "unknown"
        payload["git_sha"] = _git_sha()
        return jsonify(payload), (200 if payload["ok"] else 503)

    _register_cli(app)
    return app
