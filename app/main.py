"""runledger web application: entry point and blueprint registration."""

import logging
import os

# ---------------------------------------------------------------------------
# Sentry: initialise before anything else so all errors are captured
# ---------------------------------------------------------------------------


def _traces_sampler(sampling_context: dict) -> float:
    if (sampling_context.get("wsgi_environ") or {}).get("PATH_INFO") == "/health":
        return 0.0
    return 1.0


def _init_sentry(**options) -> bool:
    """Start Sentry when ``SENTRY_DSN`` is set; returns whether it was started."""
    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    options.setdefault("integrations", [])
    options["integrations"].append(FlaskIntegration())
    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("SENTRY_ENV", "production"),
        send_default_pii=True,
        traces_sampler=_traces_sampler,
        enable_logs=True,
        profile_session_sample_rate=1.0,
        profile_lifecycle="trace",
        **options,
    )
    return True


_init_sentry()

from db_init import _init_db, load_runledger_config
from flask import Flask, abort, g, jsonify, request

_access_log = logging.getLogger("runledger.access")
from helpers import OWNER_HEADER, REGISTRY_KEY, error_body

from runledger.errors import RunLedgerError
from runledger.session import RunSessionMachine, SessionRegistry

# ---------------------------------------------------------------------------
# Logging: inject owner_id into every record produced by the web process
# ---------------------------------------------------------------------------


class _OwnerIdFilter(logging.Filter):
    """Adds ``owner_id`` to every log record.

    Prefers ``g.owner_id`` (set per-request by ``_set_owner_context``) when
    inside a Flask request context so concurrent requests on different threads
    each get their own value.  Falls back to the ContextVar for log lines
    emitted outside of a request (e.g. session tick threads, startup).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        from flask import g as flask_g
        from flask import has_request_context

        from runledger.user_context import get_owner_id

        if has_request_context():
            record.owner_id = flask_g.get("owner_id", "-")
        else:
            record.owner_id = get_owner_id()
        return True


def _configure_logging() -> None:
    """Attach the owner_id filter + formatter to the root logger."""
    handler = logging.StreamHandler()
    handler.addFilter(_OwnerIdFilter())
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s owner=%(owner_id)s %(name)s: %(message)s"))
    root = logging.getLogger()
    # Avoid duplicate handlers when the module is reloaded in tests.
    if not any(isinstance(h, logging.StreamHandler) and hasattr(h, "stream") for h in root.handlers):
        root.addHandler(handler)
    root.setLevel(logging.INFO)


_configure_logging()


# ---------------------------------------------------------------------------
# Flask app
# ---------------------------------------------------------------------------

app = Flask(__name__)
app.config["RUNLEDGER_TICKER"] = os.environ.get("RUNLEDGER_TICKER", "1") != "0"


def _new_machine(owner_id: str) -> RunSessionMachine:
    return RunSessionMachine.from_config(
        owner_id,
        load_runledger_config(),
        run_ticker=app.config["RUNLEDGER_TICKER"],
    )


app.extensions[REGISTRY_KEY] = SessionRegistry(_new_machine)


_PUBLIC_ENDPOINTS = frozenset({"api.health", "api.api_config", "api.api_database"})


@app.before_request
def _set_owner_context():
    from runledger.db import get_db
    from runledger.user_context import set_owner_id

    # Initialise g.owner_id so the log filter always has a value for this
    # request, even if we return early below.
    g.owner_id = "-"

    try:
        _init_db()
        get_db().connect(reuse_if_open=True)
    except Exception:
        abort(503)

    owner_id = request.headers.get(OWNER_HEADER, "").strip()
    # ContextVars are not reset between requests in a single-threaded WSGI
    # process, so always overwrite it.
    set_owner_id(owner_id or "-")
    if owner_id:
        g.owner_id = owner_id
        return None
    if request.endpoint in _PUBLIC_ENDPOINTS:
        return None
    return jsonify(error_body("Unauthorized", f"missing {OWNER_HEADER} header")), 401


@app.errorhandler(RunLedgerError)
def _ledger_error(exc: RunLedgerError):
    if exc.http_status >= 500:
        # Logged with the traceback so Sentry's logging integration reports it
        logging.getLogger(__name__).error("request failed: %s", exc, exc_info=exc)
    return jsonify(exc.to_dict()), exc.http_status


@app.after_request
def _log_request(response):
    if request.endpoint != "api.health":
        _access_log.info("%s %s %s", request.method, request.path, response.status_code)
    return response


# ---------------------------------------------------------------------------
# Blueprint registration
# ---------------------------------------------------------------------------

from routes.achievements import achievements_bp
from routes.api import api_bp
from routes.sessions import sessions_bp

app.register_blueprint(api_bp)
app.register_blueprint(sessions_bp)
app.register_blueprint(achievements_bp)

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    print("Starting runledger Web App...")

    config = load_runledger_config()
    print(f"Config loaded: timezone={config.get('home_timezone')}, debug={config.get('debug')}")

    print("Server starting at: http://localhost:5000")
    print("  Sessions:     http://localhost:5000/api/sessions")
    print("  Config API:   http://localhost:5000/api/config")
    print("  Health:       http://localhost:5000/health")
    print("\nPress Ctrl+C to stop")

    try:
        app.run(debug=config.get("debug", False), host="0.0.0.0", port=5000, threaded=True)
    except Exception as e:
        print(f"Server failed to start: {e}")
        exit(1)
