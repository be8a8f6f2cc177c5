"""Command line uploader for the document intake service.

Uploads the given files as one submission, logs every progress update and
prints a JSON summary of the records once the batch settles.

Usage:
    doc-intake report.pdf annex.pdf --base-url https://intake.example.com

Environment Variables:
    DOC_INTAKE_API_URL: Service base URL (default: http://localhost:8000)
    DOC_INTAKE_TOKEN: Bearer token sent with every request
    DOC_INTAKE_POLL_INTERVAL: Seconds between status queries (default: 5)
    DOC_INTAKE_MAX_POLL_ATTEMPTS: Status queries per file (default: 60)
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

from doc_intake.config import MEGABYTE, FileUploadOptions, IntakeClientConfig
from doc_intake.core import configure_logging, get_logger
from doc_intake.upload import (
    BatchUploadController,
    FileRecord,
    FileRejection,
    FileStatus,
    IntakeClient,
    SourceFile,
)

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_REJECTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doc-intake",
        description="Upload documents for processing and follow them to completion",
    )
    parser.add_argument("files", nargs="+", help="Files to upload")
    parser.add_argument(
        "--base-url",
        default=None,
        help="Service base URL (default: $DOC_INTAKE_API_URL or http://localhost:8000)",
    )
    parser.add_argument(
        "--token",
        default=os.environ.get("DOC_INTAKE_TOKEN"),
        help="Bearer token (default: $DOC_INTAKE_TOKEN)",
    )
    parser.add_argument(
        "--max-files",
        type=int,
        default=None,
        help="Maximum files per run (default: number of files given)",
    )
    parser.add_argument(
        "--max-size-mb",
        type=float,
        default=15.0,
        help="Maximum size per file in MB (default: 15)",
    )
    parser.add_argument(
        "--accept-type",
        action="append",
        dest="accept_types",
        help="Accepted MIME type, repeatable (default: application/pdf)",
    )
    parser.add_argument("--poll-interval", type=float, help="Seconds between status queries")
    parser.add_argument("--max-poll-attempts", type=int, help="Status queries per file")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    parser.add_argument("--log-file", help="Also write log lines to this file")
    return parser


def _log_progress(records: list[FileRecord]) -> None:
    for record in records:
        logger.info(
            "file_progress",
            file_name=record.file_name,
            status=record.status.value,
            progress=record.progress,
            error=record.error,
        )


def _log_rejections(rejections: list[FileRejection]) -> None:
    for rejection in rejections:
        logger.error("file_rejected", file_name=rejection.source.name, error=rejection.error)


async def run(args: argparse.Namespace) -> int:
    """Upload the files named in ``args`` and wait for every outcome.

    Returns:
        Process exit code
    """
    config = IntakeClientConfig.from_env(base_url=args.base_url)
    overrides = {}
    if args.poll_interval is not None:
        overrides["poll_interval"] = args.poll_interval
    if args.max_poll_attempts is not None:
        overrides["max_poll_attempts"] = args.max_poll_attempts
    if overrides:
        config = IntakeClientConfig(**{**config.model_dump(), **overrides})

    options = FileUploadOptions(
        max_files=args.max_files or len(args.files),
        max_size_bytes=int(args.max_size_mb * MEGABYTE),
        accepted_file_types=args.accept_types or ["application/pdf"],
        allow_multiple=True,
    )
    sources = [SourceFile.from_path(Path(name)) for name in args.files]
    token = args.token

    async with IntakeClient(config, token_provider=lambda: token) as client:
        async with BatchUploadController(
            client,
            options,
            on_upload_progress=_log_progress,
            on_upload_error=_log_rejections,
        ) as controller:
            result = await controller.accept(sources)
            if not result.records:
                return EXIT_REJECTED
            records = await controller.wait_idle()

    print(json.dumps([r.to_dict() for r in records], indent=2))
    if result.rejections:
        return EXIT_FAILED
    if all(r.status == FileStatus.COMPLETED for r in records):
        return EXIT_OK
    return EXIT_FAILED


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the command line uploader."""
    parser = build_parser()
    args = parser.parse_args(argv)

    missing = [name for name in args.files if not Path(name).is_file()]
    if missing:
        parser.error(f"file not found: {', '.join(missing)}")

    configure_logging(
        level=args.log_level,
        json_format=args.json_logs,
        log_file=args.log_file,
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
