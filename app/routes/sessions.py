"""Live run session routes: start, samples, pause/resume, finish."""

from db_init import load_runledger_config
from flask import Blueprint, jsonify, request
from helpers import current_owner_id, error_body, get_registry, parse_date

from runledger.errors import SessionNotFound, ValidationError
from runledger.finish import FinishRequest, finish_session, stored_result
from runledger.geo import GeoSample

sessions_bp = Blueprint("sessions", __name__)

# Values a client may report on finish, overriding the server's own metrics
_REPORTED_FIELDS = ("distance_meters", "duration_seconds", "average_speed_mps", "peak_speed_mps")


def _bad_request(detail: str):
    return jsonify(error_body("BadRequest", detail)), 400


@sessions_bp.route("/api/sessions", methods=["POST"])
def start_session():
    machine = get_registry().start(current_owner_id())
    return jsonify({"session_id": machine.session_id, "session": machine.snapshot().to_dict()}), 201


@sessions_bp.route("/api/sessions/<session_id>", methods=["GET"])
def get_session(session_id):
    machine = get_registry().get(session_id, current_owner_id())
    include_route = request.args.get("route") in ("1", "true")
    return jsonify(machine.snapshot().to_dict(include_route=include_route))


@sessions_bp.route("/api/sessions/<session_id>/samples", methods=["POST"])
def ingest_samples(session_id):
    """Buffer one sample, or ``{"samples": [...]}``, for the next tick."""
    machine = get_registry().get(session_id, current_owner_id())
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _bad_request("Expected a JSON object")

    raw = data["samples"] if "samples" in data else [data]
    try:
        samples = [GeoSample.from_dict(item) for item in raw]
    except (KeyError, TypeError, ValueError) as e:
        return _bad_request(f"invalid sample: {e}")

    buffered = sum(1 for sample in samples if machine.ingest(sample))
    return jsonify({"buffered": buffered, "dropped": len(samples) - buffered}), 202


@sessions_bp.route("/api/sessions/<session_id>/pause", methods=["POST"])
def pause_session(session_id):
    machine = get_registry().get(session_id, current_owner_id())
    return jsonify(machine.pause().to_dict())


@sessions_bp.route("/api/sessions/<session_id>/resume", methods=["POST"])
def resume_session(session_id):
    machine = get_registry().get(session_id, current_owner_id())
    return jsonify(machine.resume().to_dict())


@sessions_bp.route("/api/sessions/<session_id>/finish", methods=["POST"])
def finish(session_id):
    """Complete the session and apply it to the ledgers.

    A session still live in this process is finished with its own metrics,
    optionally overridden by reported values in the body.  It stays in the
    registry until the ledgers accept or reject it, so a finish that failed
    to persist can simply be retried.  Otherwise the body must carry
    ``distance_meters`` and ``duration_seconds`` (and may carry ``date``);
    a session that was already finished returns its stored result.
    """
    owner_id = current_owner_id()
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return _bad_request("Expected a JSON object")

    try:
        reported = {key: float(data[key]) for key in _REPORTED_FIELDS if data.get(key) is not None}
    except (TypeError, ValueError) as e:
        return _bad_request(f"invalid reported value: {e}")

    config = load_runledger_config()
    registry = get_registry()
    try:
        completed = registry.complete(session_id, owner_id)
    except SessionNotFound:
        completed = None

    if completed is not None:
        finish_request = FinishRequest.from_session(completed, config.get("home_timezone", "UTC"))
        for key, value in reported.items():
            setattr(finish_request, key, value)
        try:
            result = finish_session(finish_request, config)
        except ValidationError:
            registry.release(session_id)
            raise
        registry.release(session_id)
        return jsonify(result.to_dict())

    # Live under another owner
    if session_id in registry:
        raise SessionNotFound(session_id)

    previous = stored_result(session_id, owner_id)
    if previous is not None:
        return jsonify(previous.to_dict())
    if "distance_meters" not in reported or "duration_seconds" not in reported:
        raise SessionNotFound(session_id)
    try:
        session_date = parse_date(data.get("date"), config)
    except ValueError as e:
        return _bad_request(f"invalid date: {e}")
    finish_request = FinishRequest(
        session_id=session_id,
        owner_id=owner_id,
        session_date=session_date,
        route=data.get("route"),
        **reported,
    )
    return jsonify(finish_session(finish_request, config).to_dict())
