from __future__ import annotations

import os
import traceback
from datetime import timedelta

from flask import Flask, jsonify, send_from_directory
from werkzeug.exceptions import HTTPException

# Load .env before db.py reads MONGO_URI
try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception:
    pass

from db import ensure_indexes  # required

from common import jlog
from customer_dashboard import customer_dashboard_bp
from admin_dashboard import admin_dashboard_bp
from login import login_bp
from signup import signup_bp
from admin_customers import admin_customers_bp
from admin_products import admin_products_bp
from admin_payments import admin_payments_bp
from deposit import deposit_bp
from checkout import checkout_bp
from orders import orders_bp
from products import products_bp
from transactions import transactions_bp
from admin_orders import admin_orders_bp
from admin_transactions import admin_transactions_bp
from admin_balance import admin_balance_bp
from approvals import approvals_bp
from settings import settings_bp
from settlement import settlement_bp
from telegram_webhook import telegram_webhook_bp
from reconciliation import start_scheduler
from seed import register_commands

# === Config ===
SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")
SESSION_DAYS = 30
SESSION_COOKIE_NAME = "operators_hub_session"
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = "Lax"
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "0") == "1"
SESSION_REFRESH_EACH_REQUEST = True

UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads"))
MAX_PROOF_BYTES = int(os.getenv("MAX_PROOF_BYTES", str(5 * 1024 * 1024)))


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def create_app(overrides: dict | None = None):
    app = Flask(__name__)

    # --- Session / cookies ---
    app.secret_key = SECRET_KEY
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=SESSION_DAYS)
    app.config["SESSION_COOKIE_NAME"] = SESSION_COOKIE_NAME
    app.config["SESSION_COOKIE_HTTPONLY"] = SESSION_COOKIE_HTTPONLY
    app.config["SESSION_COOKIE_SAMESITE"] = SESSION_COOKIE_SAMESITE
    app.config["SESSION_COOKIE_SECURE"] = SESSION_COOKIE_SECURE
    app.config["SESSION_REFRESH_EACH_REQUEST"] = SESSION_REFRESH_EACH_REQUEST

    # --- File uploads ---
    app.config["UPLOAD_FOLDER"] = UPLOAD_FOLDER
    app.config["MAX_PROOF_BYTES"] = MAX_PROOF_BYTES
    # leave headroom for the multipart envelope around the proof image
    app.config["MAX_CONTENT_LENGTH"] = MAX_PROOF_BYTES + 1024 * 1024

    # --- Telegram / jobs ---
    app.config["TELEGRAM_BOT_TOKEN"] = os.getenv("TELEGRAM_BOT_TOKEN", "")
    app.config["TELEGRAM_WEBHOOK_URL"] = os.getenv("TELEGRAM_WEBHOOK_URL", "")
    app.config["TELEGRAM_WEBHOOK_SECRET"] = os.getenv("TELEGRAM_WEBHOOK_SECRET", "")
    app.config["NOTIFY_SYNC"] = _env_flag("NOTIFY_SYNC")
    app.config["ENABLE_RECONCILE_JOB"] = _env_flag("ENABLE_RECONCILE_JOB")
    app.config["RECONCILE_INTERVAL_MINUTES"] = int(os.getenv("RECONCILE_INTERVAL_MINUTES", "60"))

    if overrides:
        app.config.update(overrides)
        if "SECRET_KEY" in overrides:
            app.secret_key = overrides["SECRET_KEY"]

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    try:
        ensure_indexes()
    except Exception:
        jlog("ensure_indexes_failed", error=traceback.format_exc())

    # --- Blueprints ---
    app.register_blueprint(customer_dashboard_bp)
    app.register_blueprint(admin_dashboard_bp)
    app.register_blueprint(login_bp)
    app.register_blueprint(signup_bp)
    app.register_blueprint(admin_customers_bp)
    app.register_blueprint(admin_products_bp)
    app.register_blueprint(admin_payments_bp)
    app.register_blueprint(deposit_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(admin_transactions_bp)
    app.register_blueprint(admin_balance_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(settlement_bp)
    app.register_blueprint(telegram_webhook_bp)

    register_commands(app)

    # --- Errors as JSON ---
    @app.errorhandler(HTTPException)
    def _http_error(e):
        return jsonify({"success": False, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def _uncaught(e):
        jlog("uncaught_exception", error=traceback.format_exc())
        return jsonify({"success": False, "message": "Server error"}), 500

    # --- Utility routes ---
    @app.route("/uploads/<path:filename>")
    def uploaded_file(filename):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    @app.route("/healthz")
    def healthz():
        return "ok", 200

    start_scheduler(app)
    return app


# Gunicorn entrypoint: `gunicorn app:app`
app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
