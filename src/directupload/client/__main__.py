"""Command-line uploader.

Usage:
    python -m directupload.client FILE --resource-name NAME [--api-url URL]

Ctrl+C cancels the transfer and aborts the session.
"""

import argparse
import asyncio
import logging
import signal
import sys

import httpx

from directupload.client.api_client import CoordinatorClient
from directupload.client.uploader import ClientUploadStatus, FileUploader
from directupload.core.config import UploadConfig

logger = logging.getLogger("directupload.client")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upload a file straight to object storage")
    parser.add_argument("file", help="Path of the file to upload")
    parser.add_argument("--resource-name", required=True, help="Resource the file belongs to")
    parser.add_argument("--description", default=None)
    parser.add_argument("--content-type", default=None)
    parser.add_argument("--api-url", default="http://localhost:8000", help="Upload service base URL")
    parser.add_argument("--concurrency", type=int, default=3, help="Parts uploaded in parallel")
    parser.add_argument("--prefetch", action="store_true", help="Fetch every part URL before uploading")
    parser.add_argument("--timeout", type=float, default=300.0, help="Per-request timeout in seconds")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> ClientUploadStatus:
    config = UploadConfig(max_concurrent_parts=args.concurrency)

    def show_progress(progress: float) -> None:
        print(f"\rprogress: {progress:5.1f}%", end="", file=sys.stderr, flush=True)

    async with httpx.AsyncClient(timeout=args.timeout) as http:
        api = CoordinatorClient(args.api_url, http_client=http)
        uploader = FileUploader(
            api,
            http,
            config=config,
            prefetch_part_urls=args.prefetch,
            on_progress=show_progress,
        )

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, uploader.cancel)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

        result = await uploader.upload(
            args.file,
            resource_name=args.resource_name,
            content_type=args.content_type,
            description=args.description,
        )

    print(file=sys.stderr)
    if result.status == ClientUploadStatus.COMPLETE and result.session:
        print(
            f"{result.session_id} complete: {result.session.storage_key} "
            f"({result.session.final_size} bytes, token {result.session.final_integrity_token})"
        )
    else:
        logger.error(
            f"Upload {result.status.value}: {result.error or 'cancelled'}",
            extra={"session_id": result.session_id},
        )
    return result.status


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    status = asyncio.run(run(parse_args(argv)))
    return 0 if status == ClientUploadStatus.COMPLETE else 1


if __name__ == "__main__":
    sys.exit(main())
