"""Main Flask API for QSSAGE.

Run: python -m qssage.api
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Optional, Set

import redis as redis_lib
from flask import Flask, abort, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from qssage import db, notifier
from qssage.app.scanner import scan_url
from qssage.app.urls import normalize_url
from qssage.config import load_settings, setup_logging
from qssage.errors import InvalidURL, NotificationError, ScanTimeout
from qssage.models import RiskAssessment

# Logging
setup_logging()
logger = logging.getLogger("api")

# Flask app
app = Flask(__name__)

SETTINGS = load_settings()
# None means the Playwright-backed BrowserSession
SESSION_FACTORY = None

# Rate limiter: prefer Redis storage in production when REDIS_URL is set
REDIS_URL = os.getenv("REDIS_URL")
if REDIS_URL:
    try:
        redis_lib.from_url(REDIS_URL).ping()
        limiter = Limiter(app=app, key_func=get_remote_address,
                          default_limits=["60 per minute"], storage_uri=REDIS_URL)
        logger.info("Using Redis at %s for rate limiting", REDIS_URL)
    except redis_lib.RedisError:
        logger.exception("Failed to connect to Redis, falling back to in-memory limiter")
        limiter = Limiter(app=app, key_func=get_remote_address, default_limits=["60 per minute"])
else:
    limiter = Limiter(app=app, key_func=get_remote_address, default_limits=["60 per minute"])

# API key
API_KEY = os.getenv("QSSAGE_API_KEY", None)
if API_KEY:
    logger.info("API key enabled")

# Side effects (report persistence, notifications) never block a response
executor = ThreadPoolExecutor(max_workers=int(os.getenv("QSSAGE_SIDE_EFFECT_WORKERS", "4")),
                              thread_name_prefix="qssage-side-effect")
_pending: Set[Any] = set()

db.init_db()


def require_api_key() -> None:
    if not API_KEY:
        return
    key = request.headers.get("X-API-Key") or request.args.get("api_key")
    if not key or key != API_KEY:
        abort(401, description="Invalid or missing API key")


def _submit(fn, *args, **kwargs) -> None:
    future = executor.submit(fn, *args, **kwargs)
    _pending.add(future)

    def _done(f):
        _pending.discard(f)
        exc = f.exception()
        if exc is not None:
            logger.error("Side effect %s failed: %s", getattr(fn, "__name__", fn), exc)

    future.add_done_callback(_done)


def drain_side_effects(timeout: Optional[float] = None) -> None:
    """Wait for queued side effects (tests, shutdown)."""
    wait(list(_pending), timeout=timeout)


def _store_and_notify(url: str, location: Any, note: Optional[str] = None, source: str = "manual",
                      assessment: Optional[RiskAssessment] = None) -> None:
    report = db.save_report(
        url, location, note=note, source=source,
        risk=assessment.risk.value if assessment else None,
        score=assessment.score if assessment else None,
    )
    notifier.send_webhook(report)


def report_detection(url: str, location: Optional[str], assessment: RiskAssessment) -> None:
    _submit(_store_and_notify, url, location, source="auto", assessment=assessment)


@app.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "version": "1.0"})


@app.route("/scan", methods=["POST"])
@limiter.limit("30 per minute")
def scan():
    require_api_key()
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "url" not in data:
        return jsonify({"error": "missing 'url' in JSON body"}), 400

    url = str(data["url"] or "").strip()
    if not url:
        return jsonify({"error": "empty url"}), 400

    try:
        result = scan_url(url, data.get("location"), settings=SETTINGS,
                          session_factory=SESSION_FACTORY, report_sink=report_detection)
    except InvalidURL as e:
        return jsonify({"error": "invalid_url", "detail": e.detail}), 400
    except ScanTimeout as e:
        logger.error("Scan of %s timed out: %s", url, e)
        return jsonify({"error": "scan_timeout", "detail": str(e)}), 504
    except Exception as e:
        logger.exception("Scanner failed: %s", e)
        return jsonify({"error": "scanner_failed"}), 500

    return jsonify(result), 200


@app.route("/report", methods=["POST"])
@limiter.limit("20 per minute")
def submit_report():
    require_api_key()
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not str(data.get("url") or "").strip():
        return jsonify({"ok": False, "error": "url required"}), 400

    raw = str(data["url"]).strip()
    try:
        url = normalize_url(raw)
    except InvalidURL:
        url = raw

    try:
        report = db.save_report(url, data.get("location"), note=data.get("note"), source="manual")
    except Exception as e:
        logger.exception("Saving report failed: %s", e)
        return jsonify({"ok": False, "error": "insert failed"}), 500

    _submit(notifier.send_webhook, report)
    return jsonify({"ok": True, "report": report}), 201


@app.route("/report", methods=["GET"])
@limiter.limit("20 per minute")
def reports():
    require_api_key()
    try:
        rows = db.list_reports()
    except Exception as e:
        logger.exception("Listing reports failed: %s", e)
        return jsonify({"error": "db_query_failed"}), 500
    return jsonify(rows)


@app.route("/report/<int:report_id>", methods=["DELETE"])
@limiter.limit("20 per minute")
def delete_report(report_id: int):
    require_api_key()
    if not db.delete_report(report_id):
        return jsonify({"ok": False, "error": "not_found"}), 404
    return jsonify({"ok": True})


@app.route("/dispatch/manual", methods=["POST"])
@limiter.limit("10 per minute")
def dispatch_manual():
    require_api_key()
    data = request.get_json(silent=True)
    ids = (data.get("ids") if isinstance(data, dict) else None) or []
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        return jsonify({"ok": False, "msg": "ids must be integers"}), 400
    if not ids:
        return jsonify({"ok": False, "msg": "no reports selected"}), 400

    rows = db.get_reports(ids)
    if not rows:
        return jsonify({"ok": False, "msg": "no matching reports"}), 404
    try:
        sent = notifier.dispatch_reports(rows)
    except NotificationError as e:
        logger.error("Dispatch mail failed: %s", e)
        return jsonify({"ok": False, "msg": "mail delivery failed"}), 500

    db.mark_dispatched([r["id"] for r in rows])
    return jsonify({"ok": True, "sent": sent})


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 3000)), debug=False)
