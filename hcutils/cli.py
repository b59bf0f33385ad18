"""Command line front end.

    hcutils download volume --id 1234 --out volume.tar.gz
    hcutils upload volume --location fsn1 --size 10 --name my-volume volume.tar.gz
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console

from hcutils import __version__
from hcutils.client import get_client
from hcutils.commands import DownloadType
from hcutils.config import load_settings
from hcutils.exceptions import HcutilsError, PipelineError
from hcutils.logging import LogConfig, setup_logging, teardown_logging
from hcutils.orchestrator import Orchestrator


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hcutils", description="Hetzner Cloud utilities")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    parser.add_argument("--log-file", type=str, default=None, help="Write a debug log to this file")
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Directory holding hcutils.toml (default: current directory)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    download = commands.add_parser("download", help="Download resources from the cloud")
    download_kinds = download.add_subparsers(dest="kind", required=True)
    volume = download_kinds.add_parser(
        "volume",
        help="Download a volume",
        description="Download a volume from the cloud to the local machine.",
    )
    volume.add_argument("--id", dest="volume", required=True, help="ID or name of the volume to download")
    volume.add_argument("--out", type=Path, default=None, help="Output file")
    volume.add_argument(
        "--type", dest="dl_type", type=DownloadType, default=DownloadType.ARCHIVE,
        choices=list(DownloadType), help="Type of download (archive or image)",
    )

    upload = commands.add_parser("upload", help="Upload resources to the cloud")
    upload_kinds = upload.add_subparsers(dest="kind", required=True)
    volume = upload_kinds.add_parser(
        "volume",
        help="Upload a volume",
        description="Upload a volume to the cloud from a local tar.gz archive.",
    )
    volume.add_argument("source", type=Path, help="Local tar.gz archive")
    volume.add_argument("--name", default=None, help="Name of the new volume")
    volume.add_argument("--location", required=True, help="Location to create the volume in")
    volume.add_argument("--size", type=_positive_int, required=True, help="Size of the volume in GB")
    return parser


def _report(console: Console, error: BaseException) -> None:
    if isinstance(error, PipelineError):
        console.print(f"[red]Error:[/red] {error.message}")
        for member in error.exceptions:
            console.print(f"  - {type(member).__name__}: {member}")
    else:
        console.print(f"[red]Error:[/red] {error}")


def run(args: argparse.Namespace, console: Console) -> int:
    settings = load_settings(project_dir=args.config)
    orchestrator = Orchestrator(get_client(settings), settings, console=console)

    if args.command == "download":
        downloaded = orchestrator.download_volume(args.volume, args.out, args.dl_type)
        if not downloaded.cancelled:
            console.print(f"Volume {downloaded.volume_name} saved to {downloaded.path}")
    else:
        uploaded = orchestrator.upload_volume(args.source, args.size, args.location, args.name)
        console.print(f"Uploaded {uploaded.source} to volume {uploaded.volume_name} ({uploaded.volume_id})")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()
    err_console = Console(stderr=True)

    handler_ids: list[int] = []
    if args.verbose or args.log_file:
        handler_ids = setup_logging(
            LogConfig(file=args.log_file, console=args.verbose)
        )
    try:
        return run(args, console)
    except (HcutilsError, PipelineError) as e:
        _report(err_console, e)
        return 1
    finally:
        teardown_logging(handler_ids)


if __name__ == "__main__":
    sys.exit(main())
