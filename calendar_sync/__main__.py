"""Entry point for running the service as a module.

Command-line flags are exported as environment variables, which the app
factory reads through ``calendar_sync.config``.
"""

import argparse
import os
import sys

import uvicorn

from calendar_sync import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="calendar-sync",
        description="Adds mapped secondary attendees to Google Calendar events",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"), help="Bind address (default: 0.0.0.0)")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8080")),
        help="Bind port (default: 8080, Cloud Run sets PORT)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/settings.yaml"),
        help="Path to settings.yaml (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--webhook-url",
        default=os.getenv("WEBHOOK_URL"),
        help="Public URL Google Calendar pushes notifications to",
    )
    parser.add_argument(
        "--mapping-source",
        choices=["sheet", "file"],
        default=os.getenv("MAPPING_SOURCE"),
        help="Where identity mappings are read from",
    )
    parser.add_argument(
        "--no-firestore",
        action="store_true",
        help="Keep watch channels in memory only; channels are stopped on shutdown",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
        help="json for Cloud Logging, console for local runs (default: json)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Restart on code changes, for local development",
    )
    return parser


def export_overrides(args: argparse.Namespace) -> None:
    os.environ["HOST"] = args.host
    os.environ["PORT"] = str(args.port)
    os.environ["CONFIG_PATH"] = args.config
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    if args.webhook_url:
        os.environ["WEBHOOK_URL"] = args.webhook_url
    if args.mapping_source:
        os.environ["MAPPING_SOURCE"] = args.mapping_source
    if args.no_firestore:
        os.environ["FIRESTORE_ENABLED"] = "false"


def main() -> None:
    """Parse flags and serve the app with uvicorn."""
    args = build_parser().parse_args()
    export_overrides(args)

    try:
        uvicorn.run(
            "calendar_sync.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # RequestLoggingMiddleware logs requests
        )
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        print(f"Failed to start calendar-sync: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
