# Main File

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

import dotenv

from transcuraboo.constructor import ServerManagerType
from transcuraboo.context import Context
from transcuraboo.server.constructor import construct_server_manager
from transcuraboo.services.common.job import JobStatus
from transcuraboo.services.constructor import construct_services_manager
from transcuraboo.utils import format_display_timestamp

# Configure Python's built-in logging for server initialization
# (before AsyncLoggingService is available)
logs_dir = Path("logs")
logs_dir.mkdir(parents=True, exist_ok=True)
timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
log_file = logs_dir / f"app_{timestamp}.log"

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stderr),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ],
    force=True,
)

dotenv.load_dotenv(dotenv_path=".env.local")


# -------------------------------------------------------------- #
# Output Helpers
# -------------------------------------------------------------- #


def print_turns(turns) -> None:
    for turn in turns:
        print(f"[{format_display_timestamp(turn.start_time)}] {turn.text}")


def report_job(job) -> None:
    """Print one progress line per job update."""
    print(f"{job.filename}: {job.status.value} {job.progress}%", flush=True)


# -------------------------------------------------------------- #
# Commands
# -------------------------------------------------------------- #


async def run_transcribe(context: Context, args: argparse.Namespace) -> int:
    manager = context.services_manager.transcription_job_manager
    manager.add_listener(report_job)

    job_ids = await manager.submit_files(
        args.files, chunk_seconds=args.chunk_seconds, concurrency=args.concurrency
    )
    await manager.wait_until_idle()

    exit_code = 0
    for job_id in job_ids:
        job = manager.get_job(job_id)
        print("=" * 40)
        print(f"{job.filename} [{job.status.value}]")
        if job.status == JobStatus.ERROR:
            print(job.error_message)
            exit_code = 1
        print_turns(job.transcription)
        if args.export:
            path = await context.services_manager.transcript_export_manager.export(
                job.transcription, job.filename, args.export
            )
            print(f"Saved {path}")
    return exit_code


async def run_live(context: Context, args: argparse.Namespace) -> int:
    live = context.services_manager.live_transcription_manager
    reported = 0

    def on_change(session) -> None:
        nonlocal reported
        turns = session.transcript
        print_turns(turns[reported:])
        reported = len(turns)

    live.session.add_listener(on_change)

    try:
        session = await live.start_session()
    except Exception:
        print(live.session.error, file=sys.stderr)
        return 1
    print("Listening... press Ctrl+C to stop.", flush=True)
    try:
        await session.wait_until_stopped(timeout=args.seconds or None)
    finally:
        await live.stop_session()
        print("=" * 40)
        if session.error:
            print(session.error)
        print_turns(session.transcript)
        if args.export and session.transcript:
            path = await context.services_manager.transcript_export_manager.export(
                session.transcript, f"live_{datetime.now():%Y-%m-%d_%H-%M-%S}", args.export
            )
            print(f"Saved {path}")
    return 1 if session.error else 0


# -------------------------------------------------------------- #
# Entry Point
# -------------------------------------------------------------- #


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcuraboo", description="Batch and real-time speech transcription."
    )
    parser.add_argument(
        "--testing", action="store_true", help="use scripted mock services instead of Gemini"
    )
    parser.add_argument("--production", action="store_true", help="log at INFO instead of DEBUG")
    parser.add_argument(
        "--export", choices=["txt", "srt", "json"], help="also write each transcript to a file"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    transcribe = commands.add_parser("transcribe", help="transcribe audio files")
    transcribe.add_argument("files", nargs="+", help="audio files to transcribe")
    transcribe.add_argument("--chunk-seconds", type=float, default=None)
    transcribe.add_argument("--concurrency", type=int, default=None)

    live = commands.add_parser("live", help="transcribe the microphone in real time")
    live.add_argument("--seconds", type=float, default=None, help="stop after N seconds")

    return parser


async def main(argv: list[str] | None = None) -> int:
    """Set up servers and services, then run the selected command."""
    args = build_parser().parse_args(argv)

    if args.testing:
        server_type = ServerManagerType.TESTING
    elif args.production:
        server_type = ServerManagerType.PRODUCTION
    else:
        server_type = ServerManagerType.DEVELOPMENT

    context = Context()

    servers_manager = construct_server_manager(server_type, context)
    context.set_server_manager(servers_manager)
    await servers_manager.connect_all()

    services_manager = construct_services_manager(
        server_type,
        context=context,
        console_logs=False,
        log_file=log_file.name,  # Use the same log file
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    try:
        if args.command == "transcribe":
            return await run_transcribe(context, args)
        return await run_live(context, args)
    finally:
        await services_manager.shutdown_all(timeout=60.0)


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)
