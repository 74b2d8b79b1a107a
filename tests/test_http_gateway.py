"""HTTP gateway against the simulated FastAPI service and scripted transports."""

import random

import httpx
import pytest
import pytest_asyncio

from autofill.errors import BackendError, NotFoundError, TransportError
from autofill.gateway.http import HttpGateway
from autofill.gateway.simulated import SimulatedGateway
from autofill.jobs.models import FileUpload, FillJobRequest, JobStatus, ModelOptions
from autofill.main import create_app
from autofill.simulator.backend import SimulatedBackend
from autofill.simulator.latency import LatencyModel

pytestmark = pytest.mark.asyncio

BASE_URL = "http://test/api/v1"


@pytest.fixture
def simulated(scheduler):
    backend = SimulatedBackend(failure_rate=0.0, rng=random.Random(4))
    return SimulatedGateway(backend=backend, scheduler=scheduler, latency=LatencyModel.none())


@pytest_asyncio.fixture
async def client(simulated):
    app = create_app(gateway=simulated)
    gateway = HttpGateway(BASE_URL, api_key="secret", transport=httpx.ASGITransport(app=app))
    yield gateway
    await gateway.aclose()


def _scripted(handler, api_key=None):
    return HttpGateway(BASE_URL, api_key=api_key, transport=httpx.MockTransport(handler))


async def test_health_reports_backend(client):
    payload = await client.health()
    assert payload["status"] == "healthy"
    assert payload["ok"] is True
    assert payload["backend"]["mode"] == "simulated"


async def test_full_job_flow_over_http(client, simulated, scheduler):
    docset = await client.create_document_set(
        [FileUpload(name="a.pdf", content=b"%PDF-1"), FileUpload(name="b.txt", content=b"hello")],
        name="quarterly",
    )
    assert docset.docset_id.startswith("ds_")
    assert docset.name == "quarterly"
    assert [f.name for f in docset.files] == ["a.pdf", "b.txt"]

    template = await client.upload_template(FileUpload(name="t.xlsx", content=b"xlsx"))
    assert template.template_id.startswith("tp_")
    assert template.size == 4

    request = FillJobRequest(
        docset_id=docset.docset_id,
        template_id=template.template_id,
        model_options=ModelOptions(model="custom-model"),
        instruction="fill template",
    )
    submission = await client.create_job(request)
    assert submission.status == JobStatus.QUEUED

    snapshot = await client.get_job(submission.job_id)
    assert snapshot.status == JobStatus.QUEUED
    assert snapshot.created_at.tzinfo is not None

    await scheduler.run_until_idle()
    snapshot = await client.get_job(submission.job_id)
    assert snapshot.status == JobStatus.SUCCEEDED
    assert snapshot.outputs[0].download_url.endswith("/files/0")

    content = await client.download_output(submission.job_id, 0)
    assert submission.job_id in content.decode("utf-8")


async def test_unknown_job_maps_to_not_found(client):
    with pytest.raises(NotFoundError) as excinfo:
        await client.get_job("job_nope")
    assert excinfo.value.status_code == 404
    assert excinfo.value.code == "NOT_FOUND"
    assert "job_nope" in excinfo.value.message


async def test_download_before_success_is_not_found(client):
    submission = await client.create_job(FillJobRequest(docset_id="ds", template_id="tp"))
    with pytest.raises(NotFoundError):
        await client.download_output(submission.job_id, 0)


async def test_api_key_header_only_when_configured():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("X-API-Key"))
        return httpx.Response(200, json={"ok": True})

    with_key = _scripted(handler, api_key="k-123")
    without_key = _scripted(handler)
    await with_key.health()
    await without_key.health()
    await with_key.aclose()
    await without_key.aclose()

    assert seen == ["k-123", None]


async def test_create_job_posts_json_body():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = request.read()
        return httpx.Response(200, json={"job_id": "job_1", "status": "queued"})

    gateway = _scripted(handler)
    submission = await gateway.create_job(FillJobRequest(docset_id="ds_1", template_id="tp_1"))
    await gateway.aclose()

    assert submission.job_id == "job_1"
    assert captured["url"] == "http://test/api/v1/jobs/fill-template"
    assert b'"model_options"' in captured["body"]
    assert b'"reasoning_effort":"high"' in captured["body"].replace(b" ", b"")


@pytest.mark.parametrize(
    "response, message, code",
    [
        (httpx.Response(500, json={"error": {"code": "BOOM", "message": "exploded"}}), "exploded", "BOOM"),
        (httpx.Response(400, json={"message": "bad input", "code": "INVALID"}), "bad input", "INVALID"),
        (httpx.Response(422, json={"detail": "missing docset_id"}), "missing docset_id", None),
        (httpx.Response(502, text="Bad Gateway"), "Bad Gateway", None),
        (httpx.Response(503, text=""), "HTTP 503", None),
        (httpx.Response(500, json=["unexpected"]), "HTTP 500", None),
    ],
)
async def test_error_messages_are_extracted(response, message, code):
    gateway = _scripted(lambda request: response)
    with pytest.raises(BackendError) as excinfo:
        await gateway.get_job("job_1")
    await gateway.aclose()

    assert excinfo.value.message == message
    assert excinfo.value.code == code
    assert excinfo.value.status_code == response.status_code


async def test_connection_failure_is_a_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _scripted(handler)
    with pytest.raises(TransportError):
        await gateway.get_job("job_1")
    await gateway.aclose()


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>proxy login</html>"),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, json={"job_id": "job_1", "status": "exploded"}),
    ],
)
async def test_malformed_success_body_is_a_backend_error(response):
    gateway = _scripted(lambda request: response)
    with pytest.raises(BackendError) as excinfo:
        await gateway.get_job("job_1")
    await gateway.aclose()

    assert excinfo.value.code == "BAD_RESPONSE"
    assert excinfo.value.status_code == 200
    assert "/api/v1/jobs/job_1" in excinfo.value.message
