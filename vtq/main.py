import typer
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import ValidationError
from rich.console import Console
from rich.progress import Progress, BarColumn, TextColumn, TaskID
from rich.table import Table
from vtq.config.loader import load_config
from vtq.domain.errors import TranscodeError
from vtq.domain.events import JobStarted, JobProgressUpdated, JobCompleted, JobFailed
from vtq.domain.models import JobStatus
from vtq.infrastructure.event_bus import EventBus
from vtq.infrastructure.ffmpeg import FFmpegAdapter
from vtq.infrastructure.ffprobe import FFprobeAdapter
from vtq.infrastructure.logging import setup_logging
from vtq.infrastructure.persist import LoggingUrlPersister
from vtq.pipeline.compiler import build_filter_chain
from vtq.pipeline.ladder import select_resolutions
from vtq.pipeline.queue import TranscodingQueue
from vtq.pipeline.rotation import display_dimensions, is_rotation_already_applied
from vtq.pipeline.transcoder import Transcoder

app = typer.Typer(help="VTQ - adaptive-bitrate (DASH) transcoding queue")
console = Console()

DEFAULT_CONFIG = Path("conf/vtq.yaml")

def _load(config_path: Optional[Path]):
    try:
        return load_config(config_path)
    except (ValidationError, ValueError) as e:
        typer.secho(f"Invalid config {config_path}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

@app.command()
def transcode(
    files: List[Path] = typer.Argument(..., help="Fully written source videos"),
    owner_id: str = typer.Option("0", "--owner-id", "-u", help="Owner id used in the output path"),
    original_url: Optional[str] = typer.Option(None, "--original-url", help="Stored URL to replace (single file only)"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    max_concurrent: Optional[int] = typer.Option(None, "--max-concurrent", "-j", help="Override concurrent encodes"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Also write vtq.log here"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")
):
    """Transcode source files to DASH through the bounded queue."""
    missing = [f for f in files if not f.is_file()]
    if missing:
        typer.secho(f"Error: {', '.join(str(f) for f in missing)} not found.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if original_url and len(files) > 1:
        typer.secho("Error: --original-url needs exactly one file.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    config = _load(config_path)
    if max_concurrent: config.queue.max_concurrent = max_concurrent
    if debug: config.debug = True

    logger = setup_logging(log_dir, debug=config.debug)
    logger.info(f"VTQ started: {len(files)} file(s), max_concurrent={config.queue.max_concurrent}")

    bus = EventBus()
    transcoder = Transcoder(
        config=config,
        ffprobe_adapter=FFprobeAdapter(config.encoder.ffprobe_path),
        ffmpeg_adapter=FFmpegAdapter(config.encoder.ffmpeg_path),
    )
    queue = TranscodingQueue(
        transcoder=transcoder,
        persister=LoggingUrlPersister(),
        event_bus=bus,
        max_concurrent=config.queue.max_concurrent,
        history_size=max(config.queue.history_size, len(files)),
    )

    job_ids: List[int] = []
    with Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        tasks: Dict[int, TaskID] = {}

        def on_started(event: JobStarted):
            tasks[event.job.id] = progress.add_task(event.job.source_path.name, total=100)

        def on_progress(event: JobProgressUpdated):
            if event.job.id in tasks:
                progress.update(tasks[event.job.id], completed=event.progress_percent)

        def on_finished(event):
            if event.job.id in tasks:
                progress.update(tasks[event.job.id], completed=100)

        bus.subscribe(JobStarted, on_started)
        bus.subscribe(JobProgressUpdated, on_progress)
        bus.subscribe(JobCompleted, on_finished)
        bus.subscribe(JobFailed, on_finished)

        try:
            for f in files:
                job_ids.append(queue.submit(f.resolve(), owner_id, original_url or str(f)))
            queue.wait_idle()
        except KeyboardInterrupt:
            typer.echo("\nInterrupted by user")
            queue.shutdown(wait=False)
            raise typer.Exit(code=130)

    queue.shutdown()

    table = Table(title="Transcoding results")
    table.add_column("Job", justify="right")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Manifest / error")
    failed = 0
    for job_id in job_ids:
        job = queue.get_status(job_id)
        if job is None:
            continue
        if job.status == JobStatus.COMPLETED:
            table.add_row(str(job.id), job.source_path.name, "[green]completed", job.result.manifest_url)
        else:
            failed += 1
            table.add_row(str(job.id), job.source_path.name, f"[red]{job.status.value}", job.error or "")
    console.print(table)

    if failed:
        raise typer.Exit(code=1)

@app.command()
def probe(
    file: Path = typer.Argument(..., help="Video file to inspect"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Show what ffprobe reports for a file."""
    config = _load(config_path)
    adapter = FFprobeAdapter(config.encoder.ffprobe_path)
    try:
        info = adapter.probe(file)
    except TranscodeError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    table = Table(title=file.name, show_header=False)
    for key, value in info.model_dump().items():
        table.add_row(key, str(value))
    applied = is_rotation_already_applied(info.width, info.height, info.rotation_degrees)
    table.add_row("rotation_already_applied", str(applied))
    console.print(table)

@app.command()
def ladder(
    width: int = typer.Argument(..., help="Encoded source width"),
    height: int = typer.Argument(..., help="Encoded source height"),
    rotation: int = typer.Option(0, "--rotation", "-r", help="Rotation metadata (0/90/180/270)"),
    include_original: Optional[bool] = typer.Option(None, "--original/--no-original", help="Include original rendition"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Print the resolution ladder and filter chains for a source size."""
    if width <= 0 or height <= 0 or rotation not in (0, 90, 180, 270):
        typer.secho("Error: invalid dimensions or rotation.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    config = _load(config_path)
    applied = config.rotation.detect_pre_applied and is_rotation_already_applied(width, height, rotation)
    display_w, display_h = display_dimensions(width, height, rotation, applied)
    result = select_resolutions(display_w, display_h, include_original=include_original, config=config.ladder)

    table = Table(title=f"{width}x{height} rotation={rotation} applied={applied}")
    table.add_column("#", justify="right")
    table.add_column("Label")
    table.add_column("Size")
    table.add_column("Bitrate")
    table.add_column("Filter")
    for index, rendition in enumerate(result):
        chain = build_filter_chain(index, rendition, rotation, applied, config.encoder.scale_flags)
        table.add_row(str(index), rendition.label, rendition.resolution, f"{rendition.bitrate_kbps}k", chain.expression)
    console.print(table)

@app.command()
def check(
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Verify that ffmpeg can be executed."""
    config = _load(config_path)
    if FFmpegAdapter(config.encoder.ffmpeg_path).check_available():
        typer.secho("ffmpeg is available", fg=typer.colors.GREEN)
    else:
        typer.secho("ffmpeg is not available", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

if __name__ == "__main__":
    app()
