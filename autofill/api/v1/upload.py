"""Upload API: document sets and templates as multipart bodies.

  POST /docsets:   one or more `files[]` plus an optional `name`
  POST /templates: a single `file` plus an optional `name`
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from autofill.api.v1.deps import get_gateway
from autofill.gateway.base import BackendGateway
from autofill.jobs.models import DocumentSet, FileUpload, TemplateInfo

router = APIRouter()

# Max upload size per file: 50 MB
_MAX_FILE_BYTES = 50 * 1024 * 1024


async def _read_upload(upload: UploadFile) -> FileUpload:
    content = await upload.read()
    if len(content) > _MAX_FILE_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 50 MB)")
    return FileUpload(
        name=upload.filename or "upload",
        content=content,
        content_type=upload.content_type or "application/octet-stream",
    )


@router.post("/docsets", response_model=DocumentSet)
async def create_document_set(
    files: List[UploadFile] = File(..., alias="files[]"),
    name: Optional[str] = Form(None),
    gateway: BackendGateway = Depends(get_gateway),
):
    """Store the uploaded source documents as one document set."""
    uploads = [await _read_upload(f) for f in files]
    return await gateway.create_document_set(uploads, name=name)


@router.post("/templates", response_model=TemplateInfo)
async def upload_template(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    gateway: BackendGateway = Depends(get_gateway),
):
    """Store the template file that jobs will fill."""
    upload = await _read_upload(file)
    return await gateway.upload_template(upload, name=name)
