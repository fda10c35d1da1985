"""Command line interface for production uploader package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import QueueProgressDisplay, render_configuration_summary
from .models import BatchSummary, FileCategory, Project, UploadConfig
from .orchestrator import UploadQueue
from .services import GoogleDriveRemoteStore, HTTPAPIClient, HTTPRecordStore, TokenAuthenticator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ORPHANS = 2
EXIT_INTERRUPTED = 130


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    env_level = os.getenv("LOG_LEVEL")
    if silent or (not debug and not log_level and not env_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, (log_level or env_level).upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # Request lines from httpx are noise below debug
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _collect_files(sources: Sequence[Path]) -> List[Path]:
    """Expand directories into their visible files, keeping argument order."""
    files: List[Path] = []
    for source in sources:
        if source.is_file():
            files.append(source)
        elif source.is_dir():
            files.extend(
                p for p in sorted(source.iterdir())
                if p.is_file() and not p.name.startswith(".")
            )
        else:
            raise CLIError(f"source does not exist: {source}")
    if not files:
        raise CLIError("no files to upload")
    return files


def _exit_code(summary: BatchSummary) -> int:
    if summary.has_orphans:
        return EXIT_ORPHANS
    if not summary.all_success:
        return EXIT_FAILED
    return EXIT_OK


async def _run_upload(
    files: List[Path],
    project: Project,
    category: FileCategory,
    config: UploadConfig,
    retries: int,
) -> int:
    datastore_api_url = os.getenv("DATASTORE_API_URL")
    if not datastore_api_url:
        raise CLIError("DATASTORE_API_URL environment variable is not set")
    token = os.getenv("DRIVE_ACCESS_TOKEN")
    if not token:
        raise CLIError("DRIVE_ACCESS_TOKEN environment variable is not set")

    authenticator = TokenAuthenticator(token)
    display = QueueProgressDisplay()

    async with HTTPAPIClient(
        datastore_api_url,
        timeout=config.request_timeout,
        max_retries=config.max_retries,
    ) as api_client, GoogleDriveRemoteStore(authenticator, config) as drive:
        async with UploadQueue(
            project,
            authenticator,
            drive,
            HTTPRecordStore(api_client),
            config=config,
        ) as queue:
            queue.on_task_status(display.on_task_status)
            queue.on_task_progress(display.on_task_progress)
            queue.enqueue(files, category)

            summary = await queue.start_all()
            for _ in range(retries):
                if summary.failed_count == 0 or summary.auth_required:
                    break
                summary = await queue.retry_failed()

            display.on_finish(summary, queue.tasks)

    return _exit_code(summary)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prod-upload",
        description="Upload production files to Google Drive and record them in the datastore.",
    )
    parser.add_argument("sources", nargs="*", type=Path, help="Files or folders to upload")
    parser.add_argument("-p", "--project-id", default=None, help="Project the files belong to")
    parser.add_argument(
        "-i",
        "--content-id",
        default=None,
        help="Content identifier used for folder and file names (example: ABC-1000)",
    )
    parser.add_argument(
        "-c",
        "--category",
        default=FileCategory.PRIMARY_FOOTAGE.value,
        help=f"File category ({', '.join(c.value for c in FileCategory)})",
    )
    parser.add_argument(
        "-j",
        "--parallel",
        type=int,
        default=None,
        help="Concurrent uploads (default from PRODUCTION_UPLOAD_MAX_PARALLEL or 1)",
    )
    parser.add_argument(
        "-r",
        "--retries",
        type=int,
        default=0,
        help="Retry failed uploads this many times",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="prod-upload (from production_uploader)",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return EXIT_FAILED

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if not args.sources:
        parser.print_help()
        return EXIT_OK

    if not args.project_id:
        print("ERROR: --project-id is required", file=sys.stderr)
        return EXIT_FAILED

    try:
        category = FileCategory.parse(args.category)
        config = UploadConfig.from_env()
        if args.parallel is not None:
            config = replace(config, max_parallel=max(1, args.parallel))
        files = _collect_files([Path(s).expanduser() for s in args.sources])
    except (CLIError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FAILED

    project = Project(args.project_id, args.content_id)
    render_configuration_summary(
        {
            "Files": len(files),
            "Project": project.id,
            "Content ID": project.content_id or "-",
            "Category": category.value,
            "Destination": f"/{config.root_folder}/{project.folder_key}/{category.group.folder_name}",
            "Parallel": config.max_parallel,
            "Retries": args.retries,
            "Datastore API": os.getenv("DATASTORE_API_URL") or "(missing)",
            "Drive Token": "set" if os.getenv("DRIVE_ACCESS_TOKEN") else "(missing)",
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run_upload(
                files=files,
                project=project,
                category=category,
                config=config,
                retries=max(0, args.retries),
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return EXIT_INTERRUPTED


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
