"""autofill: submit fill-template jobs and track them from the terminal."""

import asyncio
from pathlib import Path
from typing import List, Optional

import typer

from autofill.config import Settings
from autofill.context import AppContext, app_context
from autofill.errors import AutofillError
from autofill.jobs.models import (
    DEFAULT_INSTRUCTION,
    DEFAULT_MODEL,
    FileUpload,
    FillJobRequest,
    JobMode,
    JobRecord,
    MemoryLimit,
    ModelOptions,
    ReasoningEffort,
)
from autofill.jobs.progress import ProgressEstimator
from autofill.jobs.service import status_counts
from autofill.logger import configure_logging

app = typer.Typer(
    add_completion=False,
    help="Submit document-generation jobs and follow them to completion.",
)


@app.callback()
def main(
    ctx: typer.Context,
    mock: Optional[bool] = typer.Option(None, "--mock/--no-mock", help="Use the simulated backend."),
    base_url: Optional[str] = typer.Option(None, help="Backend base URL."),
    api_key: Optional[str] = typer.Option(None, envvar="AUTOFILL_API_KEY", help="X-API-Key value."),
    log_level: Optional[str] = typer.Option(None, help="Logging level."),
) -> None:
    overrides = {}
    if mock is not None:
        overrides["use_mock"] = mock
    if base_url:
        overrides["base_url"] = base_url
    if api_key:
        overrides["api_key"] = api_key
    if log_level:
        overrides["log_level"] = log_level
    settings = Settings(**overrides)
    configure_logging(settings.log_level)
    ctx.obj = settings


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except AutofillError as exc:
        typer.echo(f"❌ {exc}", err=True)
        raise typer.Exit(code=1)


def _describe(record: JobRecord) -> str:
    line = (
        f"{record.job_id}  {record.status.value:<9}  {record.stage or '-':<14}  "
        f"{record.created_at:%Y-%m-%d %H:%M:%S}"
    )
    if record.outputs:
        line += f"  {record.outputs[0].filename}"
    if record.error:
        line += f"  [{record.error.code}] {record.error.message}"
    return line


def _require_credentials(settings: Settings) -> None:
    if not settings.use_mock and not settings.api_key:
        typer.echo("❌ No API key configured. Set AUTOFILL_API_KEY or pass --mock.", err=True)
        raise typer.Exit(code=1)


async def _follow(ctx: AppContext, job_id: str) -> JobRecord:
    """Poll a job to completion while printing the estimated progress."""
    done = asyncio.Event()
    estimator = ProgressEstimator(scheduler=ctx.scheduler)
    record = ctx.jobs.get(job_id)
    estimator.update_from_status(record.status if record else None)

    def on_update(updated: JobRecord) -> None:
        estimator.update_from_status(updated.status)
        if updated.is_terminal:
            done.set()

    poller = ctx.jobs.watch(job_id, on_update=on_update)
    if poller is None:
        done.set()

    try:
        while not done.is_set():
            current = ctx.jobs.get(job_id)
            status = current.status.value if current else "unknown"
            typer.echo(f"\r{estimator.value:5.1f}%  {status:<9}", nl=False)
            try:
                await asyncio.wait_for(done.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
        # Let the success snap to 100 land before the final line
        await asyncio.sleep(0.85)
        typer.echo(f"\r{estimator.value:5.1f}%")
    finally:
        estimator.close()
    return ctx.jobs.get(job_id)


@app.command()
def health(ctx: typer.Context) -> None:
    """Check that the backend is reachable."""
    settings: Settings = ctx.obj

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            payload = await app_ctx.gateway.health()
            typer.echo(f"✅ backend healthy: {payload}")

    _run(run())


@app.command()
def submit(
    ctx: typer.Context,
    docs: List[Path] = typer.Option(..., "--doc", exists=True, dir_okay=False, help="Source document (repeatable)."),
    template: Path = typer.Option(..., exists=True, dir_okay=False, help="Template file to fill."),
    instruction: str = typer.Option(DEFAULT_INSTRUCTION, help="Instruction for the model."),
    model: str = typer.Option(DEFAULT_MODEL),
    effort: ReasoningEffort = typer.Option(ReasoningEffort.HIGH),
    memory: MemoryLimit = typer.Option(MemoryLimit.GB_4),
    mode: JobMode = typer.Option(JobMode.ASYNC),
    docset_name: Optional[str] = typer.Option(None, help="Name for the uploaded document set."),
    watch: bool = typer.Option(True, "--watch/--no-watch", help="Follow the job until it finishes."),
) -> None:
    """Upload documents and a template, then start a fill job."""
    settings: Settings = ctx.obj
    _require_credentials(settings)

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            sources = [FileUpload.from_path(p) for p in docs]
            template_upload = FileUpload.from_path(template)
            docset = await app_ctx.jobs.upload_document_set(sources, name=docset_name)
            typer.echo(f"docset_id: {docset.docset_id}")
            template_info = await app_ctx.jobs.upload_template(template_upload)
            typer.echo(f"template_id: {template_info.template_id}")

            request = FillJobRequest(
                docset_id=docset.docset_id,
                template_id=template_info.template_id,
                mode=mode,
                model_options=ModelOptions(model=model, reasoning_effort=effort, memory_limit=memory),
                instruction=instruction,
            )
            record = await app_ctx.jobs.submit(
                request,
                template_file=template_upload.meta(),
                source_files=[s.meta() for s in sources],
            )
            typer.echo(f"job_id: {record.job_id}")
            if watch:
                record = await _follow(app_ctx, record.job_id)
                typer.echo(_describe(record))

    _run(run())


@app.command("jobs")
def list_jobs(
    ctx: typer.Context,
    job_filter: str = typer.Option("all", "--filter", help="all | running | succeeded | failed"),
) -> None:
    """List jobs from the local registry."""
    settings: Settings = ctx.obj

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            try:
                records = app_ctx.jobs.list(job_filter)
            except ValueError as exc:
                raise typer.BadParameter(str(exc))
            for record in records:
                typer.echo(_describe(record))
            counts = status_counts(app_ctx.store.records)
            typer.echo(", ".join(f"{k}: {v}" for k, v in counts.items() if v) or "no jobs")

    _run(run())


@app.command()
def show(ctx: typer.Context, job_id: str, follow: bool = typer.Option(False, "--follow")) -> None:
    """Show a job, fetching it from the backend if it is not known locally."""
    settings: Settings = ctx.obj

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            record = await app_ctx.jobs.open(job_id)
            if follow and not record.is_terminal:
                record = await _follow(app_ctx, job_id)
            typer.echo(_describe(record))

    _run(run())


@app.command()
def refresh(ctx: typer.Context, job_id: str) -> None:
    """Fetch the latest status of one job."""
    settings: Settings = ctx.obj

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            typer.echo(_describe(await app_ctx.jobs.refresh(job_id)))

    _run(run())


@app.command()
def sync(ctx: typer.Context) -> None:
    """Refresh every queued or running job once."""
    settings: Settings = ctx.obj

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            for record in await app_ctx.jobs.refresh_pending():
                typer.echo(_describe(record))

    _run(run())


@app.command()
def download(
    ctx: typer.Context,
    job_id: str,
    index: int = typer.Option(0, help="Output index."),
    out: Optional[Path] = typer.Option(None, help="Destination file or directory."),
) -> None:
    """Download an output file of a succeeded job."""
    settings: Settings = ctx.obj

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            filename, content = await app_ctx.jobs.download(job_id, index)
            target = out or Path(filename)
            if target.is_dir():
                target = target / filename
            target.write_bytes(content)
            typer.echo(f"✅ saved {target} ({len(content)} bytes)")

    _run(run())


@app.command()
def retry(ctx: typer.Context, job_id: str, watch: bool = typer.Option(False, "--watch/--no-watch")) -> None:
    """Start a new job with the same inputs as an earlier one."""
    settings: Settings = ctx.obj
    _require_credentials(settings)

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            record = await app_ctx.jobs.retry(job_id)
            typer.echo(f"job_id: {record.job_id}")
            if watch:
                typer.echo(_describe(await _follow(app_ctx, record.job_id)))

    _run(run())


@app.command()
def clear(ctx: typer.Context, yes: bool = typer.Option(False, "--yes", help="Skip confirmation.")) -> None:
    """Delete every job from the local registry."""
    settings: Settings = ctx.obj
    if not yes:
        typer.confirm("Remove all local job records?", abort=True)

    async def run() -> None:
        async with app_context(settings, background_refresh=False) as app_ctx:
            app_ctx.jobs.clear()
            typer.echo("✅ local job registry cleared")

    _run(run())


if __name__ == "__main__":
    app()
