"""accountlink entry point.

Usage::

    accountlink serve [--host HOST] [--port PORT] [--dev]
"""

import argparse
import logging
from importlib.metadata import version as get_version

from accountlink.config import get_settings
from accountlink.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="accountlink - link provider accounts to platform users",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  accountlink serve                  Start the API server
  accountlink serve --port 9000      Start on another port
  accountlink serve --dev            Start with auto-reload (dev mode)
""",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve"],
        help="Subcommand (default: serve)",
    )
    parser.add_argument("--host", type=str, default=None, help="Host to bind (default: settings)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port (default: settings)")
    parser.add_argument("--dev", action="store_true", help="Development mode with auto-reload")
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {get_version('accountlink')}",
    )

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(level=settings.log_level)

    host = args.host or settings.web_host
    port = args.port or settings.web_port

    from accountlink.api.serve import run_api_server

    try:
        run_api_server(host=host, port=port, dev=args.dev)
    except KeyboardInterrupt:
        logger.info("accountlink stopped.")


if __name__ == "__main__":
    main()
