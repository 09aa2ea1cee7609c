# Overview: JSON response helpers mapping ledger results and errors to HTTP statuses.

from flask import jsonify

from .services.errors import LedgerError
from .services.results import CancellationOutcome, LedgerResult


def error_response(error: LedgerError):
    payload = {"error": error.message, "code": error.code}
    if error.details:
        payload["details"] = error.details
    if error.manual_intervention_required:
        payload["manual_intervention_required"] = True
    return jsonify(payload), error.http_status


def result_response(result: LedgerResult, success_status: int = 200):
    if not result.ok:
        status = result.error.http_status if result.error else 500
        payload = result.to_dict()
        payload["error"] = result.error.message if result.error else "Operation failed"
        if result.error:
            payload["code"] = result.error.code
        return jsonify(payload), status
    return jsonify(result.to_dict()), success_status


def outcome_response(outcome: CancellationOutcome):
    """The cancellation channel decides the status; refund details ride along."""
    payload = outcome.to_dict()
    if not outcome.ok:
        error = outcome.cancellation.error
        payload["error"] = error.message if error else "Operation failed"
        return jsonify(payload), error.http_status if error else 500
    return jsonify(payload), 200
