"""General API routes (config, database, health) for the runledger web app."""

from db_init import _init_db, load_runledger_config
from flask import Blueprint, jsonify, request
from helpers import ADMIN_OWNERS_ENV, current_owner_id, error_body, get_database_info, is_admin_owner

api_bp = Blueprint("api", __name__)


@api_bp.route("/api/config", methods=["GET"])
def api_config():
    """Return the current configuration as JSON."""
    return jsonify(load_runledger_config())


@api_bp.route("/api/config", methods=["PUT"])
def api_config_save():
    """Persist a new configuration to the DB.

    The thresholds apply to every owner, so only owners listed in
    ``RUNLEDGER_ADMIN_OWNERS`` may change them.
    """
    if not is_admin_owner(current_owner_id()):
        return jsonify(error_body("Forbidden", f"owner is not listed in {ADMIN_OWNERS_ENV}")), 403
    data = request.get_json(silent=True)
    if not data or not isinstance(data, dict):
        return jsonify(error_body("BadRequest", "Expected a JSON object")), 400
    _init_db()
    from runledger.appconfig import save_config

    save_config(data)
    return jsonify({"status": "saved"})


@api_bp.route("/api/database")
def api_database():
    """API endpoint for database information."""
    return jsonify(get_database_info())


@api_bp.route("/health")
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "app": "runledger-web"})
