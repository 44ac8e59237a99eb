from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from molted.errors import PaymentInfrastructureError
from molted.marketplace.approval import (
    ApprovalError,
    ApprovalErrorKind,
    ApprovalStateMachine,
    PaymentRequiredError,
)
from molted.marketplace.dependencies import get_agent_key, get_approval_machine, get_current_agent, limiter, logger
from molted.models import Agent, ApproveRequest, ApproveResponse
from molted.payments import PAYMENT_REQUIRED_HEADER

router = APIRouter(tags=["Approvals"])

ERROR_STATUS = {
    ApprovalErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ApprovalErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ApprovalErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ApprovalErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ApprovalErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@router.post("/approve", response_model=ApproveResponse, response_model_exclude_none=True)
@limiter.limit("30/minute", key_func=get_agent_key)
async def approve_job(
    request: Request,
    approve_request: ApproveRequest,
    x_payment: Optional[str] = Header(None),
    agent: Agent = Depends(get_current_agent),
    machine: ApprovalStateMachine = Depends(get_approval_machine),
):
    """
    Approve or reject a job completion

    Approving is a two-step x402 exchange:
    1. Without an X-Payment header the response is 402 with the payment requirement
    2. After paying, resubmit with X-Payment set to the tx hash (or a facilitator receipt)
    """
    try:
        return await machine.review(
            agent,
            approve_request.job_id,
            approve_request.approved,
            payment_header=x_payment,
        )
    except PaymentRequiredError as e:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=e.body.model_copy(update={"reason": e.reason}).model_dump(mode="json", exclude_none=True),
            headers={PAYMENT_REQUIRED_HEADER: e.requirement.to_header()},
        )
    except ApprovalError as e:
        logger.info("approval_refused", job_id=approve_request.job_id, kind=e.kind.value, error=e.message)
        content = {"error": e.message}
        if e.tx_hash:
            content["payment_tx_hash"] = e.tx_hash
        return JSONResponse(status_code=ERROR_STATUS[e.kind], content=content)
    except PaymentInfrastructureError as e:
        logger.error("payment_verification_unavailable", job_id=approve_request.job_id, error=e.message)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Payment verification unavailable: {e.message}"
        )
