"""Command-line ingestion of company documents into an organization's corpus.

Runs the same ingestion service the HTTP API uses, without the web server:
upload the files, drive parsing chunk by chunk until the job is parsed, and
optionally generate the training corpus straight away (skipping review).

Usage::

    python -m trainkb.cli run --org acme pricing.pdf objections.docx --generate
    python -m trainkb.cli status --org acme <job_id>
    python -m trainkb.cli history --org acme
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from trainkb.config.settings import Settings
from trainkb.models.ingestion import IncomingFile, IngestionJob
from trainkb.services.ingestion_service import IngestionService
from trainkb.utils.errors import ChunkClaimConflictError, ExtractionTransientError, TrainKBError
from trainkb.utils.logging import log_context

# Consecutive transient failures tolerated on one chunk before giving up.
_MAX_CHUNK_RETRIES = 3
_RETRY_DELAY_SECONDS = 2.0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_files(paths: list[str]) -> list[IncomingFile]:
    """Read each path into an :class:`IncomingFile`.

    The content type is left empty; the document extractor infers it from
    the file extension.
    """
    incoming: list[IncomingFile] = []
    for raw_path in paths:
        path = Path(raw_path)
        incoming.append(IncomingFile(name=path.name, data=path.read_bytes()))
    return incoming


def _print_job(job: IngestionJob) -> None:
    print(f"Job:      {job.id}")
    print(f"Status:   {job.status.value}")
    print(f"Progress: {job.parsed_chunks}/{job.total_chunks} chunks")
    print(f"Files:    {', '.join(f.name for f in job.files) or '-'}")
    if job.parse_error:
        print(f"Error:    {job.parse_error}")
    if job.generation_log:
        print("\nGeneration log:")
        for entry in job.generation_log:
            line = f"  {entry.step:<16} {entry.status.value}"
            if entry.detail:
                line += f"  ({entry.detail})"
            print(line)
    if job.generation_summary:
        _print_summary(job.generation_summary)


def _print_summary(summary: dict[str, int]) -> None:
    print("\nCorpus summary:")
    for key, count in summary.items():
        print(f"  {key:<20} {count}")


async def _build_service(app_settings: Settings) -> IngestionService:
    # Imported here so that ``--help`` does not pay for building the app.
    from trainkb.main import build_components, initialize_stores

    components: dict[str, Any] = build_components(app_settings)
    await initialize_stores(components)
    registry = components["provider_registry"]
    if not registry["llm"]:
        print(
            f"Warning: LLM provider '{registry['llm_provider']}' is not configured; "
            "chunk extraction will fail.",
            file=sys.stderr,
        )
    return components["ingestion_service"]


async def _parse_all(service: IngestionService, job_id: str, organization_id: str) -> dict[str, Any]:
    """Call parse-next until the job reports done, retrying transient failures."""
    failures = 0
    while True:
        try:
            result = await service.parse_next(job_id, organization_id)
        except ExtractionTransientError as exc:
            failures += 1
            kind = "busy" if isinstance(exc, ChunkClaimConflictError) else "failed"
            print(f"  chunk {kind}: {exc.message} (attempt {failures}/{_MAX_CHUNK_RETRIES})")
            if failures >= _MAX_CHUNK_RETRIES:
                raise
            await asyncio.sleep(_RETRY_DELAY_SECONDS)
            continue

        failures = 0
        progress = result.progress
        if result.chunk_result is not None:
            counts = result.chunk_result
            print(
                f"  chunk {progress['parsed_chunks']}/{progress['total_chunks']}: "
                f"{counts.get('package_count', 0)} packages, "
                f"{counts.get('guideline_count', 0)} guidelines, "
                f"{counts.get('topic_count', 0)} topics"
            )
        if result.done:
            return result.parsed_data or {}


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_run(args: argparse.Namespace, app_settings: Settings) -> int:
    service = await _build_service(app_settings)
    files = _read_files(args.files)

    job = await service.upload(args.org, files)
    print(f"Uploaded {len(files)} file(s) as job {job.id} ({job.total_chunks} chunks)")

    parsed = await _parse_all(service, job.id, args.org)
    print(
        f"\nParsed: {len(parsed.get('packages', []))} packages, "
        f"{len(parsed.get('guidelines', []))} guidelines, "
        f"{len(parsed.get('courses', []))} courses, "
        f"{len(parsed.get('conflicts', []))} conflicts"
    )

    if not args.generate:
        print("\nReview the data, then generate with the API or `run --generate`.")
        return 0

    result = await service.generate(job.id, args.org)
    print("\nGeneration complete.")
    _print_summary(result.summary)
    return 0


async def _handle_status(args: argparse.Namespace, app_settings: Settings) -> int:
    service = await _build_service(app_settings)
    job = await service.status(args.job_id, args.org)
    _print_job(job)
    return 0


async def _handle_history(args: argparse.Namespace, app_settings: Settings) -> int:
    service = await _build_service(app_settings)
    jobs = await service.history(args.org, args.limit)
    if not jobs:
        print(f"No ingestion jobs for organization '{args.org}'.")
        return 0
    for job in jobs:
        print(
            f"{job.id}  {job.status.value:<10} "
            f"{job.parsed_chunks}/{job.total_chunks}  "
            f"{job.created_at:%Y-%m-%d %H:%M}  "
            f"{', '.join(f.name for f in job.files)}"
        )
    return 0


_HANDLERS = {
    "run": _handle_run,
    "status": _handle_status,
    "history": _handle_history,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m trainkb.cli",
        description="Ingest company documents into an organization's training corpus.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Ingestion commands")

    run_parser = subparsers.add_parser("run", help="Upload files and parse every chunk")
    run_parser.add_argument("--org", required=True, help="Organization id")
    run_parser.add_argument("files", nargs="+", help="PDF, DOCX or text files (at most 3)")
    run_parser.add_argument(
        "--generate",
        action="store_true",
        help="Replace the organization's corpus once parsing finishes",
    )

    status_parser = subparsers.add_parser("status", help="Show a job's status and log")
    status_parser.add_argument("--org", required=True, help="Organization id")
    status_parser.add_argument("job_id", help="Ingestion job id")

    history_parser = subparsers.add_parser("history", help="List recent jobs")
    history_parser.add_argument("--org", required=True, help="Organization id")
    history_parser.add_argument("--limit", type=int, default=None, help="Maximum jobs to list")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, dispatch to the command handler and exit with its code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    handler = _HANDLERS[args.command]
    try:
        with log_context(organization_id=args.org, command=args.command):
            exit_code = asyncio.run(handler(args, app_settings))
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    except TrainKBError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        for rejection in exc.context.get("rejections", []):
            print(f"  {rejection.get('file') or '-'}: {rejection.get('reason')}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
