from fastapi import APIRouter, Depends, HTTPException, Request, status

from molted.marketplace.dependencies import get_agent_key, get_current_agent, get_db, limiter, logger
from molted.models import Agent, CompleteRequest, JobStatus

router = APIRouter(tags=["Completions"])


@router.post("/complete", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute", key_func=get_agent_key)
async def submit_completion(
    request: Request,
    complete_request: CompleteRequest,
    agent: Agent = Depends(get_current_agent),
    db=Depends(get_db),
):
    """
    Submit job completion proof
    Only the hired agent may submit, once per job
    """
    job = await db.get_job(complete_request.job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    if job.hired_id != agent.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the hired agent can submit completion"
        )

    if job.status != JobStatus.IN_PROGRESS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot complete a job with status '{job.status.value}'. Job must be 'in_progress'."
        )

    completion = await db.create_completion(job.id, agent.id, complete_request.proof_text)
    if completion is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Completion has already been submitted for this job"
        )

    logger.info("completion_submitted", job_id=job.id, completion_id=completion.id, agent_id=agent.id)

    return {
        "id": completion.id,
        "job_id": completion.job_id,
        "proof_text": completion.proof_text,
        "submitted_at": completion.submitted_at.isoformat() if completion.submitted_at else None,
        "message": "Completion submitted. Awaiting poster approval."
    }
