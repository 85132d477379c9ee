"""CLI entrypoint for transcript-pipeline."""

import logging
from pathlib import Path

import rich_click as click

from transcript_pipeline import __version__
from transcript_pipeline.controllers import (
    CommandResult,
    DispatchCommand,
    InspectTaskCommand,
    JobStatusCommand,
    ListTasksCommand,
    PipelineCliController,
    ReapCommand,
    SubmitCommand,
)

click.rich_click.USE_MARKDOWN = True
PIPELINE_CONTROLLER = PipelineCliController()

DB_PATH_HELP = "SQLite DB path (defaults to TRANSCRIPT_PIPELINE_DB_PATH)."


@click.group()
@click.version_option(version=__version__, prog_name="transcript-pipeline")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def transcript_pipeline(log_level: str) -> None:
    """Audio transcription and proofreading pipeline over a durable task queue."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@transcript_pipeline.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--file",
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Audio file to transcribe.",
)
@click.option("--language", default=None, help="Preferred transcription language, e.g. he.")
@click.option("--context", default=None, help="Domain context passed to the proofreader.")
def submit(
    db_path: Path | None,
    file_path: Path,
    language: str | None,
    context: str | None,
) -> None:
    """Upload an audio file and create a transcription job."""

    _emit(
        PIPELINE_CONTROLLER.submit(
            SubmitCommand(
                db_path=db_path,
                file_path=file_path,
                language=language,
                context=context,
            ),
        ),
    )


@transcript_pipeline.command("dispatch")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--drain/--once",
    default=False,
    show_default=True,
    help="Process tasks until the queue is empty, or exactly one invocation.",
)
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop draining after this many tasks.",
)
def dispatch(db_path: Path | None, drain: bool, max_tasks: int | None) -> None:
    """Claim and execute pending tasks."""

    _emit(
        PIPELINE_CONTROLLER.dispatch(
            DispatchCommand(
                db_path=db_path,
                drain=drain,
                max_tasks=max_tasks,
            ),
        ),
    )


@transcript_pipeline.command("reap")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
def reap(db_path: Path | None) -> None:
    """Retry or fail tasks whose lease expired."""

    _emit(PIPELINE_CONTROLLER.reap(ReapCommand(db_path=db_path)))


@transcript_pipeline.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--job-id", required=True, help="Job id.")
def status(db_path: Path | None, job_id: str) -> None:
    """Show job status, progress and result."""

    _emit(PIPELINE_CONTROLLER.status(JobStatusCommand(db_path=db_path, job_id=job_id)))


@transcript_pipeline.command("tasks")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--status",
    type=click.Choice(["pending", "locked", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--job-id", default=None, help="Optional job filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks(db_path: Path | None, status: str | None, job_id: str | None, limit: int) -> None:
    """List queue tasks, newest first."""

    _emit(
        PIPELINE_CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                status=status,
                job_id=job_id,
                limit=limit,
            ),
        ),
    )


@transcript_pipeline.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
def inspect(db_path: Path | None, task_id: str) -> None:
    """Inspect one task with event history."""

    _emit(PIPELINE_CONTROLLER.inspect_task(InspectTaskCommand(db_path=db_path, task_id=task_id)))


@transcript_pipeline.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=click.IntRange(min=1, max=65535), default=8000, show_default=True)
def serve(db_path: Path | None, host: str, port: int) -> None:
    """Run the HTTP API with uvicorn."""

    import uvicorn

    from transcript_pipeline.api import create_app
    from transcript_pipeline.config import Settings

    uvicorn.run(create_app(Settings.from_env(db_path=db_path)), host=host, port=port)


def _emit(result: CommandResult) -> None:
    for line in result.lines:
        click.echo(line)
    if not result.success:
        raise click.exceptions.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    transcript_pipeline()
