"""Main module for the upload pipeline CLI."""

import argparse
import json
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from .core import (
    ConfigurationError,
    ImagePolicy,
    PipelineConfig,
    UploadPipelineError,
    load_config,
    setup_logger,
    with_error_handling,
)
from .core.error_handling import delete_on_failure
from .core.factories import CompressionPipelineFactory
from .core.storage import public_url, remove_stored, storage_path
from .processors import serial_process_batch
from .processors.common import run_processing

VERSION = "0.1.0"


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="upload-pipeline",
        description="Upload Pipeline - size-bounded compression for uploaded files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Compress files in place, one JSON line per file
  upload-pipeline compress /uploads/questoes/a1b2.jpg /uploads/simulados/c3d4.pdf

  # Store a local file the way the upload endpoint does, then compress it
  upload-pipeline ingest --folder questoes ./scan.pdf

  # Delete a stored upload
  upload-pipeline delete --folder questoes a1b2.jpg

  # Show the effective configuration
  upload-pipeline config
        """,
    )

    subparsers: argparse._SubParsersAction = parser.add_subparsers(
        dest="command", help="Available commands"
    )

    compress_parser = subparsers.add_parser(
        "compress", help="Compress uploaded files in place"
    )
    compress_parser.add_argument("paths", nargs="+", help="Files to compress")
    compress_parser.add_argument(
        "--image-policy",
        choices=[p.value for p in ImagePolicy],
        default=None,
        help="Override IMAGE_POLICY for this run",
    )
    compress_parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )

    ingest_parser = subparsers.add_parser(
        "ingest", help="Copy a file into the upload directory and compress it"
    )
    ingest_parser.add_argument("path", help="Local file to ingest")
    ingest_parser.add_argument("--folder", required=True, help="Target upload folder")
    ingest_parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )

    delete_parser = subparsers.add_parser("delete", help="Delete a stored upload")
    delete_parser.add_argument("filename", help="Stored file name")
    delete_parser.add_argument("--folder", required=True, help="Upload folder")

    subparsers.add_parser("config", help="Print the effective configuration")
    subparsers.add_parser("version", help="Show version information")
    return parser


def _load(args: argparse.Namespace) -> PipelineConfig:
    if getattr(args, "debug", False):
        setup_logger("upload-pipeline", level="DEBUG")
    config = load_config()
    policy = getattr(args, "image_policy", None)
    if policy:
        config = config.model_copy(update={"image_policy": ImagePolicy(policy)})
    return config


def run_compress(args: argparse.Namespace) -> int:
    config = _load(args)
    dispatcher = CompressionPipelineFactory.create_pipeline(config=config)
    outcomes = run_processing(args.paths, dispatcher, serial_process_batch, config)
    for outcome in outcomes:
        print(json.dumps(outcome.to_response()))
    return 0 if all(o.success for o in outcomes) else 1


@with_error_handling
def run_ingest(args: argparse.Namespace) -> int:
    config = _load(args)
    source = Path(args.path)
    if not source.is_file():
        print(json.dumps({"error": f"File not found: {source}"}))
        return 1

    try:
        dest = storage_path(config, args.folder, source.name)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with delete_on_failure(dest):
            shutil.copyfile(source, dest)
        result = CompressionPipelineFactory.create_pipeline(config=config).compress(dest)
    except UploadPipelineError as exc:
        print(json.dumps({"error": str(exc), "status": exc.http_status}))
        return 1

    print(
        json.dumps(
            {
                "url": public_url(config, args.folder, dest.name),
                "folder": args.folder,
                "filename": dest.name,
                "originalname": source.name,
                **result.to_response(),
            }
        )
    )
    return 0


def run_delete(args: argparse.Namespace) -> int:
    path = remove_stored(_load(args), args.folder, args.filename)
    print(json.dumps({"success": True, "folder": args.folder, "filename": path.name}))
    return 0


def run_config(args: argparse.Namespace) -> int:
    print(json.dumps(_load(args).model_dump(mode="json"), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the command-line interface of the upload pipeline.

    Exits with status 1 when any file was rejected, the configuration is
    invalid, or no command was given.
    """
    parser = build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    handlers = {
        "compress": run_compress,
        "ingest": run_ingest,
        "delete": run_delete,
        "config": run_config,
    }

    if args.command in handlers:
        try:
            code = handlers[args.command](args)
        except ConfigurationError as exc:
            print(f"Configuration error: {exc}", file=sys.stderr)
            code = 1
        except UploadPipelineError as exc:
            print(json.dumps({"error": str(exc), "status": exc.http_status}))
            code = 1
        sys.exit(code)

    elif args.command == "version":
        print("Upload Pipeline CLI")
        print(f"Version {VERSION}")
        print("Size-bounded compression for uploaded images, PDFs and documents")
        sys.exit(0)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
