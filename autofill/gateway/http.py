"""Gateway to a real backend over HTTP."""

import json
import logging
from typing import Any, Dict, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from autofill.config import Settings
from autofill.errors import BackendError, NotFoundError, TransportError
from autofill.gateway.base import BackendGateway
from autofill.jobs.models import (
    DocumentSet,
    FileUpload,
    FillJobRequest,
    JobSnapshot,
    JobSubmission,
    TemplateInfo,
)

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"

ModelT = TypeVar("ModelT", bound=BaseModel)


def _error_message(response: httpx.Response) -> tuple:
    """Best-effort (message, code, detail) from an error response body."""
    fallback = f"HTTP {response.status_code}"
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        text = response.text.strip()
        return (text[:500] or fallback), None, None

    if not isinstance(body, dict):
        return fallback, None, None

    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"], error.get("code"), error.get("detail")
    if isinstance(body.get("message"), str) and body["message"]:
        return body["message"], body.get("code"), None
    # FastAPI-style {"detail": "..."}
    if isinstance(body.get("detail"), str) and body["detail"]:
        return body["detail"], None, None
    return fallback, None, None


class HttpGateway(BackendGateway):
    """Talks to `<base_url><api_prefix>` with an optional API key header."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {}
        if api_key:
            headers[API_KEY_HEADER] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "HttpGateway":
        return cls(
            settings.api_root,
            api_key=settings.api_key,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %s", method, path, exc)
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        if response.is_success:
            return response

        message, code, detail = _error_message(response)
        if response.status_code == 404:
            raise NotFoundError(message, code=code or "NOT_FOUND", detail=detail)
        raise BackendError(
            message, status_code=response.status_code, code=code, detail=detail
        )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(
                f"Malformed response body from {response.request.url.path}",
                status_code=response.status_code,
                code="BAD_RESPONSE",
            ) from exc

    def _parse(self, response: httpx.Response, model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate(self._json(response))
        except ValidationError as exc:
            raise BackendError(
                f"Unexpected {model.__name__} payload from {response.request.url.path}",
                status_code=response.status_code,
                code="BAD_RESPONSE",
                detail=exc.errors(),
            ) from exc

    async def health(self) -> Dict[str, Any]:
        response = await self._request("GET", "/health")
        return self._json(response)

    async def create_document_set(
        self, files: Sequence[FileUpload], name: Optional[str] = None
    ) -> DocumentSet:
        multipart = [
            ("files[]", (f.name, f.content, f.content_type)) for f in files
        ]
        data = {"name": name} if name else None
        response = await self._request("POST", "/docsets", files=multipart, data=data)
        return self._parse(response, DocumentSet)

    async def upload_template(
        self, file: FileUpload, name: Optional[str] = None
    ) -> TemplateInfo:
        multipart = {"file": (file.name, file.content, file.content_type)}
        data = {"name": name} if name else None
        response = await self._request("POST", "/templates", files=multipart, data=data)
        return self._parse(response, TemplateInfo)

    async def create_job(self, request: FillJobRequest) -> JobSubmission:
        response = await self._request(
            "POST", "/jobs/fill-template", json=request.model_dump(mode="json")
        )
        return self._parse(response, JobSubmission)

    async def get_job(self, job_id: str) -> JobSnapshot:
        response = await self._request("GET", f"/jobs/{job_id}")
        return self._parse(response, JobSnapshot)

    async def download_output(self, job_id: str, index: int = 0) -> bytes:
        response = await self._request("GET", f"/jobs/{job_id}/files/{index}")
        return response.content

    async def aclose(self) -> None:
        await self._client.aclose()
