"""
Phone Fetch Worker API Routes

External phone workers poll these endpoints:
- POST /lease   - get one listing post to resolve (or {"status": "empty"})
- POST /report  - close a lease with the phone found, or an error

Both require the worker token when WORKER_API_TOKEN is set.
"""
import logging
from contextlib import closing

from flask import Blueprint, request, jsonify

from api.contracts import LeaseRequest, ReportRequest
from services.phone_fetch_lease import PhoneFetchLeaseService
from utils.rate_limiter import limiter, RATE_LIMITS
from utils.worker_auth import require_worker_token

logger = logging.getLogger(__name__)

phone_fetch_bp = Blueprint('phone_fetch', __name__)


def _lease_service() -> PhoneFetchLeaseService:
    """A fresh service per request; callers close it when done."""
    return PhoneFetchLeaseService()


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@phone_fetch_bp.route("/lease", methods=["POST"])
@limiter.limit(RATE_LIMITS["worker"])
@require_worker_token
def lease():
    """
    Lease a post for phone fetch.

    Body:
        - workerId: worker identifier (optional)

    Returns:
        Lease payload, or {"status": "empty"} when nothing is leasable
    """
    params = LeaseRequest.model_validate(_json_body())
    with closing(_lease_service()) as service:
        grant = service.lease(params.worker_id)
    if grant is None:
        return jsonify({"status": "empty"})
    return jsonify(grant.to_api())


@phone_fetch_bp.route("/report", methods=["POST"])
@limiter.limit(RATE_LIMITS["worker"])
@require_worker_token
def report():
    """
    Report a phone fetch result.

    Body:
        - leaseId: lease id returned from /lease
        - status: "ok" | "error"
        - phoneNumber: required for a successful report
        - businessTitle: business title if the worker already has it
        - error: failure reason

    Returns:
        204 regardless of whether the lease was still live
    """
    params = ReportRequest.model_validate(_json_body())
    with closing(_lease_service()) as service:
        if params.is_ok:
            service.report_ok(params.lease_id, params.phone_number, params.business_title)
        else:
            service.report_error(params.lease_id, params.error or 'unknown')
    return '', 204
