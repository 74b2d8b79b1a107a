"""Job API: submit fill-template jobs, poll status, download outputs."""

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from autofill.api.v1.deps import get_gateway
from autofill.gateway.base import BackendGateway
from autofill.jobs.models import FillJobRequest, JobSnapshot, JobSubmission

router = APIRouter()


@router.post("/jobs/fill-template", response_model=JobSubmission)
async def submit_fill_job(
    request: FillJobRequest,
    gateway: BackendGateway = Depends(get_gateway),
):
    """Submit a new fill-template job. Poll GET /jobs/{id} for status."""
    return await gateway.create_job(request)


@router.get("/jobs/{job_id}", response_model=JobSnapshot)
async def get_job_status(job_id: str, gateway: BackendGateway = Depends(get_gateway)):
    """Current status, stage, outputs and error of a job."""
    return await gateway.get_job(job_id)


@router.get("/jobs/{job_id}/files/{index}")
async def download_job_output(
    job_id: str,
    index: int,
    gateway: BackendGateway = Depends(get_gateway),
):
    """Download one output file of a succeeded job."""
    snapshot = await gateway.get_job(job_id)
    content = await gateway.download_output(job_id, index)
    filename = snapshot.outputs[index].filename
    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
