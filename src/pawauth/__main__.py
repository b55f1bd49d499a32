"""PawAuth entry point.

Changes:
  - 2026-03-07: ``serve`` is the default command; --log-level overrides settings.
  - 2026-03-04: Initial CLI with Rich logging.
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from pawauth.config import get_settings
from pawauth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("pawauth")
    except PackageNotFoundError:
        from pawauth import __version__

        return __version__


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="PawAuth - OAuth 2.0 authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pawauth serve                      Start the authorization server
  pawauth serve --port 9000          Bind a different port
  pawauth serve --dev                Auto-reload on source changes
""",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind (default: PAWAUTH_WEB_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=None,
        help="Port to bind (default: PAWAUTH_WEB_PORT or 8888)",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode with auto-reload",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (default: PAWAUTH_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {_package_version()}",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve"],
        help="Subcommand: 'serve' starts the authorization server (default)",
    )

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(level=args.log_level or settings.log_level)

    host = args.host if args.host is not None else settings.web_host
    port = args.port if args.port is not None else settings.web_port

    try:
        if args.command == "serve":
            from pawauth.api.serve import run_api_server

            run_api_server(host=host, port=port, dev=args.dev)
    except KeyboardInterrupt:
        logger.info("PawAuth stopped.")


if __name__ == "__main__":
    main()
