import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from modgate.core.auth import ActingUser, get_identity
from modgate.core.config import settings
from modgate.core.result import Err, ErrorKind, Result
from modgate.schemas.billing import ReconciliationQueued, ReconciliationRequest
from modgate.tasks import enqueue_reconciliation

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/subscriptions/{subscription_id}/reconcile",
    response_model=ReconciliationQueued,
    status_code=202,
    summary="Retry reconciliation for a subscription",
)
async def trigger_reconciliation(
    subscription_id: str,
    data: ReconciliationRequest | None = None,
    identity: Result[ActingUser] = Depends(get_identity),
) -> ReconciliationQueued | JSONResponse:
    """Queue removal of billing items left pending by a failed renewal run."""
    if isinstance(identity, Err):
        return JSONResponse(status_code=identity.status_code, content=identity.to_body())
    if identity.value.role != settings.ADMIN_ROLE:
        err = Err(ErrorKind.FORBIDDEN, "Only administrators can trigger reconciliation")
        return JSONResponse(status_code=err.status_code, content=err.to_body())

    period_start = data.period_start.isoformat() if data and data.period_start else None
    job = await enqueue_reconciliation(subscription_id, period_start)
    logger.info(
        "Reconciliation of %s requested by %s", subscription_id, identity.value.user_id
    )
    return ReconciliationQueued(
        subscription_id=subscription_id,
        job_id=job.job_id if job is not None else None,
        status="queued" if job is not None else "already_queued",
    )
