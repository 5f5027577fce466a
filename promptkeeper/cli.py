"""
Command Line Interface for the PromptKeeper application.

Provides commands for creating the database, serving the API and moving
projects in and out of the store as files.
"""
import argparse
import json
import logging
import os
import sys

from promptkeeper import __version__
from promptkeeper.config import settings
from promptkeeper.database import SessionLocal, init_db
from promptkeeper.enums import ExportFormat, ImportFormat
from promptkeeper.errors import PromptKeeperError
from promptkeeper.services import ImportService, export_projects
from promptkeeper.services.import_service import detect_format

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PromptKeeper CLI")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(title="commands", dest="command")

    subparsers.add_parser("init-db", help="Create the database tables")

    serve_parser = subparsers.add_parser("serve", help="Run the PromptKeeper API server")
    serve_parser.add_argument("--host", type=str, default=settings.HOST, help="Interface to bind.")
    serve_parser.add_argument("--port", type=int, default=settings.PORT, help="Port to listen on.")

    export_parser = subparsers.add_parser("export", help="Export projects to a file")
    export_parser.add_argument(
        "--project-id",
        dest="project_ids",
        action="append",
        required=True,
        help="Project to export. Repeat for several projects.",
    )
    export_parser.add_argument(
        "--format",
        choices=[f.value for f in ExportFormat],
        default=ExportFormat.JSON.value,
        help="Output format.",
    )
    export_parser.add_argument("--output", "-o", type=str, help="Output file path. Defaults to a timestamped name.")

    import_parser = subparsers.add_parser("import", help="Import projects from a JSON or CSV export")
    import_parser.add_argument("file", help="File to import.")
    import_parser.add_argument(
        "--format",
        choices=[f.value for f in ImportFormat],
        help="Input format. Guessed from the file extension when omitted.",
    )
    return parser


def _run_export(args) -> int:
    db = SessionLocal()
    try:
        payload = export_projects(db, args.project_ids, args.format)
    finally:
        db.close()
    output_path = args.output or payload.filename
    with open(output_path, "wb") as fh:
        fh.write(payload.content)
    print(f"CLI: Exported {len(payload.content)} bytes to {output_path}")
    return 0


def _run_import(args) -> int:
    if not os.path.exists(args.file):
        print(f"Error: File not found: {args.file}", file=sys.stderr)
        return 1
    fmt = args.format or detect_format(args.file)
    with open(args.file, "rb") as fh:
        payload = fh.read()

    db = SessionLocal()
    try:
        report = ImportService().import_payload(db, payload, fmt)
    finally:
        db.close()
    print(json.dumps(report.model_dump(), ensure_ascii=False, indent=2))
    return 0


def main_cli(argv=None):
    """
    Main function for the PromptKeeper CLI.
    Parses arguments and dispatches commands.
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )
    # Control verbosity of noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)

    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "init-db":
        init_db()
        print("CLI: Database initialized.")
        return 0

    elif args.command == "serve":
        import uvicorn

        print(f"CLI: Serving PromptKeeper on {args.host}:{args.port}")
        uvicorn.run("promptkeeper.main:app", host=args.host, port=args.port)
        return 0

    elif args.command in ("export", "import"):
        init_db()
        try:
            if args.command == "export":
                return _run_export(args)
            return _run_import(args)
        except PromptKeeperError as e:
            print(f"CLI: {args.command} failed: {e.kind}: {e.message}", file=sys.stderr)
            return 1

    parser.print_help()
    return 0


def main():
    sys.exit(main_cli())


if __name__ == "__main__":
    main()
