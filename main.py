"""CLI entrypoint: run/resume a book pipeline in the foreground, inspect jobs, serve the API."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from utils.logger import setup_logger


logger = logging.getLogger("bookture.cli")


def _print(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str, indent=2))


async def _run_foreground(runtime, decision) -> None:
    try:
        if decision.needs_launch:
            await runtime.orchestrator.run(decision.job_id)
    finally:
        await runtime.aclose()
    job = runtime.store.require_job(decision.job_id)
    _print(
        {
            "action": decision.action.value,
            "job_id": job.id,
            "stage": job.stage.value,
            "progress": job.progress,
            "total_units": job.total_units,
            "cover_artifact": job.cover_artifact,
            "error": job.error,
        }
    )


def _inspect(args) -> None:
    """Read-only commands; no model credentials needed."""
    from config import get_settings
    from orchestrator.store import JsonFileJobStore

    store = JsonFileJobStore(Path(get_settings().storage.job_store_path))
    job = store.require_job(args.job_id)
    if args.command == "status":
        _print(job.model_dump(mode="json"))
    else:
        _print([unit.model_dump(mode="json") for unit in store.list_units(job.id)])


def main() -> None:
    parser = argparse.ArgumentParser(description="Bookture: illustrate a book with generative models")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", default="", help="optional log file name under logs/")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="start (or resume) the pipeline for a document")
    run.add_argument("--file", required=True)
    run.add_argument("--title", default="")
    run.add_argument("--owner", default="local")

    resume = sub.add_parser("resume", help="resume a job by id")
    resume.add_argument("--job-id", required=True)

    status = sub.add_parser("status")
    status.add_argument("--job-id", required=True)

    pages = sub.add_parser("pages")
    pages.add_argument("--job-id", required=True)

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    setup_logger(level=getattr(logging, str(args.log_level).upper(), logging.INFO), log_file=args.log_file or None)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("webapp.app:app", host=args.host, port=int(args.port))
        return

    if args.command in ("status", "pages"):
        _inspect(args)
        return

    from webapp.runtime import get_runtime

    runtime = get_runtime()

    if args.command == "run":
        source = Path(args.file).resolve()
        title = str(args.title or "").strip() or source.stem
        decision = runtime.guard.admit(args.owner, title, source_path=str(source))
        logger.info("intake action=%s job_id=%s", decision.action.value, decision.job_id)
        asyncio.run(_run_foreground(runtime, decision))
        return

    if args.command == "resume":
        decision = runtime.guard.admit_existing(args.job_id)
        logger.info("intake action=%s job_id=%s", decision.action.value, decision.job_id)
        asyncio.run(_run_foreground(runtime, decision))
        return


if __name__ == "__main__":
    main()
