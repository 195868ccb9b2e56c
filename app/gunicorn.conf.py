"""
Gunicorn configuration for runledger.

Key points:
1. Live sessions are held in process memory, so one worker process serves
   every request; concurrency comes from threads.
2. post_fork drops any database connection inherited from the master.
3. Re-installs the owner-tagged log handler in the worker.
4. Starts Sentry in the worker when SENTRY_DSN is set.
"""

import logging
import os

bind = os.environ.get("RUNLEDGER_BIND", "0.0.0.0:5000")
workers = 1
threads = int(os.environ.get("RUNLEDGER_THREADS", "8"))
wsgi_app = "main:app"

# -------------------------
# Gunicorn access log
# -------------------------
# We emit our own access log lines in main.py's _log_request, so disable Gunicorn's default.
accesslog = None


# -------------------------
# Worker post-fork hook
# -------------------------
def post_fork(server, worker):
    """
    Called after each Gunicorn worker is forked.
    Resets DB state and logging in the worker.
    """
    import db_init
    from main import _OwnerIdFilter

    from runledger.db import reset_db

    # 1. Never share the master's SQLite/Postgres connection
    reset_db()
    db_init._db_initialized = False

    # 2. Clean and configure root logger
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    handler.addFilter(_OwnerIdFilter())
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s owner=%(owner_id)s %(name)s: %(message)s"))
    root.addHandler(handler)

    # 3. Initialize Sentry in the worker
    if os.environ.get("SENTRY_DSN"):
        from main import _init_sentry
        from sentry_sdk.integrations.logging import LoggingIntegration

        from runledger.user_context import get_owner_id

        # Logging integration: breadcrumbs for INFO, errors as events
        sentry_logging = LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)

        def before_breadcrumb(breadcrumb, hint):
            breadcrumb.setdefault("data", {})["owner_id"] = get_owner_id()
            return breadcrumb

        _init_sentry(integrations=[sentry_logging], before_breadcrumb=before_breadcrumb)
        logging.info("Worker post_fork: Sentry initialized")

    logging.info("Worker post_fork: database reset and logging configured")
