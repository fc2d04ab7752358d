"""Command-line interface for the SDR call pipeline."""

from datetime import date, datetime
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sdr_pipeline import __version__
from sdr_pipeline.config.log_config import configure_logging
from sdr_pipeline.config.settings import get_settings
from sdr_pipeline.db_models import DailyTranscript
from sdr_pipeline.errors import PipelineError

app = typer.Typer(
    name="sdr-pipeline",
    help="SDR Call Pipeline - segment, classify and grade daily call transcripts",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    "pending": "dim",
    "processing": "yellow",
    "completed": "green",
    "partial": "magenta",
    "failed": "red",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    load_dotenv()
    settings = get_settings()
    configure_logging("DEBUG" if verbose else "WARNING", json_output=settings.log_json and not verbose)


def _open_session():
    from sdr_pipeline.database import SessionLocal, init_db

    init_db()
    return SessionLocal()


def _fail(error: Exception) -> None:
    console.print(f"\n[red]Error:[/red] {error}")
    raise typer.Exit(code=1)


# =============================================================================
# Commands
# =============================================================================

@app.command()
def process(
    transcript_path: Path = typer.Argument(
        ...,
        help="Path to a plain-text daily transcript",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    sdr_id: str = typer.Option(..., "--sdr-id", help="Owner of the transcript"),
    transcript_date: Optional[datetime] = typer.Option(
        None,
        "--date",
        formats=["%Y-%m-%d"],
        help="Day the calls were made (default: today)",
    ),
) -> None:
    """Store a transcript file and run the full pipeline on it."""
    from sdr_pipeline.repository import TranscriptRepository
    from sdr_pipeline.services.pipeline_runner import get_orchestrator

    raw_text = transcript_path.read_text(encoding="utf-8")
    day = transcript_date.date() if transcript_date else date.today()

    console.print(
        Panel.fit(
            "[bold blue]SDR Call Pipeline[/bold blue]\n"
            f"Processing {transcript_path.name} for {sdr_id} ({day.isoformat()})",
            border_style="blue",
        )
    )

    session = _open_session()
    try:
        repo = TranscriptRepository(session)
        transcript = repo.create_transcript(sdr_id, day, raw_text)
        repo.commit()
        with console.status("[yellow]Segmenting, classifying and grading...[/yellow]"):
            outcome = get_orchestrator().process_transcript(session, transcript.id)
        _display_transcript(repo.get_transcript(outcome.transcript_id))
    except PipelineError as e:
        _fail(e)
    finally:
        session.close()


@app.command()
def segment(
    transcript_path: Path = typer.Argument(
        ...,
        help="Path to a plain-text daily transcript",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
) -> None:
    """Print the heuristic segmentation of a transcript without storing anything."""
    from sdr_pipeline.pipeline.stages.classification import classify_text
    from sdr_pipeline.pipeline.stages.segmentation import SegmentationTrace, segment_transcript

    settings = get_settings()
    trace = SegmentationTrace()
    segments = segment_transcript(
        transcript_path.read_text(encoding="utf-8"),
        gap_seconds=settings.split_gap_seconds,
        trace=trace,
    )

    table = Table(title=f"{len(segments)} calls detected")
    table.add_column("#", justify="right")
    table.add_column("Start")
    table.add_column("Duration", justify="right")
    table.add_column("Type")
    table.add_column("First line", overflow="ellipsis", max_width=60)

    for index, seg in enumerate(segments, start=1):
        first_line = next((line for line in seg.raw_text.splitlines() if line.strip()), "")
        duration = f"{seg.approx_duration_seconds}s" if seg.approx_duration_seconds is not None else "-"
        table.add_row(
            str(index),
            seg.start_timestamp or "-",
            duration,
            classify_text(seg.raw_text)[0].value,
            first_line.strip(),
        )
    console.print(table)

    if trace.used_fallback:
        console.print("[yellow]No timestamps found; the whole transcript is one segment.[/yellow]")
    else:
        reasons: dict[str, int] = {}
        for boundary in trace.boundaries:
            reasons[boundary.reason] = reasons.get(boundary.reason, 0) + 1
        summary = ", ".join(f"{name}={count}" for name, count in sorted(reasons.items()))
        console.print(f"[dim]Turns parsed: {trace.turns_parsed}. Boundaries: {summary or 'none'}[/dim]")


@app.command()
def retry(
    transcript_id: str = typer.Argument(..., help="Transcript to retry"),
    resplit: bool = typer.Option(False, "--resplit", help="Discard calls and segment again"),
) -> None:
    """Retry a failed, partial or stuck transcript."""
    from sdr_pipeline.pipeline.retry import RetryManager
    from sdr_pipeline.repository import TranscriptRepository
    from sdr_pipeline.services.pipeline_runner import get_orchestrator

    session = _open_session()
    try:
        outcome = RetryManager(get_orchestrator()).retry_transcript(session, transcript_id, resplit=resplit)
        _display_transcript(TranscriptRepository(session).get_transcript(outcome.transcript_id))
    except PipelineError as e:
        _fail(e)
    finally:
        session.close()


@app.command()
def regrade(call_id: str = typer.Argument(..., help="Call to grade again")) -> None:
    """Re-grade one meaningful call, keeping the rep's coaching feedback."""
    from sdr_pipeline.pipeline.retry import RetryManager
    from sdr_pipeline.services.pipeline_runner import get_orchestrator

    session = _open_session()
    try:
        outcome = RetryManager(get_orchestrator()).regrade_call(session, call_id)
    except PipelineError as e:
        _fail(e)
    finally:
        session.close()

    if outcome.succeeded:
        console.print(f"[green]Re-graded:[/green] {call_id} -> {outcome.overall_grade}")
    else:
        console.print(f"[red]Re-grade failed:[/red] {outcome.error}")
    console.print(f"[dim]Transcript status: {outcome.transcript_status.value}[/dim]")


@app.command()
def status(
    transcript_id: str = typer.Argument(..., help="Transcript to inspect"),
    watch: bool = typer.Option(False, "--watch", "-w", help="Poll until the status is terminal"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up watching after N seconds"),
) -> None:
    """Show a transcript's status and calls."""
    from sdr_pipeline.pipeline.monitoring import wait_for_terminal
    from sdr_pipeline.repository import TranscriptRepository

    settings = get_settings()
    session = _open_session()
    try:
        repo = TranscriptRepository(session)
        repo.get_transcript(transcript_id)

        if watch:
            def fetch():
                session.expire_all()
                transcript = repo.get_transcript(transcript_id)
                return transcript.processing_status, transcript.updated_at

            with console.status("[yellow]Waiting for processing to finish...[/yellow]"):
                wait_for_terminal(
                    fetch,
                    base_interval=settings.poll_interval_seconds,
                    max_interval=settings.poll_max_interval_seconds,
                    threshold_seconds=settings.stuck_threshold_seconds,
                    timeout_seconds=timeout,
                )

        _display_transcript(repo.get_transcript(transcript_id))
    except PipelineError as e:
        _fail(e)
    finally:
        session.close()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Port"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sdr_pipeline.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=False,
    )


@app.command()
def info() -> None:
    """Display system information and configuration."""
    settings = get_settings()

    console.print(Panel.fit("[bold blue]SDR Call Pipeline[/bold blue]", border_style="blue"))

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("Database", settings.database_url)
    table.add_row("Splitter", settings.splitter_backend.value)
    table.add_row("Classifier", settings.classifier_backend.value)
    table.add_row("Grader", settings.grader_backend.value)
    table.add_row("LLM Model", settings.llm_model_name)
    table.add_row("Ollama URL", settings.llm_ollama_base_url)
    table.add_row("Stuck Threshold", f"{settings.stuck_threshold_seconds}s")

    console.print(table)


# =============================================================================
# Display
# =============================================================================

def _display_transcript(transcript: DailyTranscript) -> None:
    """Print a transcript's status line and its call table."""
    style = STATUS_STYLES.get(transcript.processing_status, "white")
    console.print(
        f"\n[bold]Transcript[/bold] {transcript.id}  "
        f"[{style}]{transcript.processing_status}[/{style}]"
    )
    if transcript.processing_error:
        console.print(f"[red]{transcript.processing_error}[/red]")

    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Call ID", style="dim")
    table.add_column("Start")
    table.add_column("Type")
    table.add_column("Prospect")
    table.add_column("Status")
    table.add_column("Grade", justify="center")
    table.add_column("Meeting", justify="center")

    for call in transcript.calls:
        grade = call.grade
        prospect = " / ".join(p for p in (call.prospect_name, call.prospect_company) if p)
        meeting = "-"
        if grade is not None and grade.meeting_scheduled is not None:
            meeting = "yes" if grade.meeting_scheduled else "no"
        table.add_row(
            str(call.call_index),
            call.id,
            call.start_timestamp or "-",
            call.call_type or "?",
            prospect or "-",
            call.analysis_status,
            grade.overall_grade if grade is not None else "-",
            meeting,
        )
    console.print(table)
    console.print(
        f"[dim]{transcript.total_calls_detected} calls, "
        f"{transcript.meaningful_calls_count} meaningful[/dim]"
    )


if __name__ == "__main__":
    app()
