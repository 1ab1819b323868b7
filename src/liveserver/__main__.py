"""
=============================================================================
LIVE SERVER CLI ENTRY POINT
=============================================================================

    # Serve the current directory on 5500 (or the next free port)
    python -m liveserver

    # Serve a directory, open a specific page as the default document
    python -m liveserver --root ./site site/about.html

    # Reachable from phones on the LAN
    python -m liveserver --host 0.0.0.0

    # HTTPS with a generated self-signed certificate
    python -m liveserver --https

    # HTTPS with your own certificate
    python -m liveserver --https --cert dev.crt --key dev.key

The process runs until Ctrl+C (SIGINT) or SIGTERM, then stops the server
cleanly. Defaults come from LIVESERVER_* environment variables (see
ServerConfig.from_env); flags override them.

=============================================================================
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

from . import __version__
from .config import ServerConfig
from .events import ServerEvent, ServerEventType
from .manager import LiveServerManager


logger = logging.getLogger("liveserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liveserver",
        description="Static development server with live reload",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m liveserver                          # Serve the current directory
  python -m liveserver --port 8080              # Custom port
  python -m liveserver --no-auto-port           # Fail instead of trying the next port
  python -m liveserver --https                  # Self-signed HTTPS
  python -m liveserver --root site site/a.html  # Open a.html as the default page
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # SERVING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "file",
        nargs="?",
        default=None,
        help="File to use as the default document (its directory is served if --root is not given)",
    )
    parser.add_argument("--root", "-r", default=None, help="Directory to serve (default: current directory)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: 5500)")
    parser.add_argument("--host", "-H", default=None, help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument(
        "--no-auto-port",
        action="store_true",
        help="Fail if the port is busy instead of trying the next ones",
    )
    parser.add_argument("--cors", action="store_true", help="Send permissive CORS headers")

    # ─────────────────────────────────────────────────────────────────────
    # HTTPS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--https", action="store_true", help="Serve over HTTPS")
    parser.add_argument("--https-port", type=int, default=None, help="Port for HTTPS (default: --port)")
    parser.add_argument("--domain", default=None, help="Domain for the generated certificate (default: localhost)")
    parser.add_argument("--cert", default=None, help="PEM certificate to use instead of a generated one")
    parser.add_argument("--key", default=None, help="PEM private key matching --cert")

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING / META
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--verbose", action="store_true", help="Log every request")
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--version", "-v", action="version", version=f"liveserver {__version__}")
    return parser


def options_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Only the flags that were given; everything else keeps its default."""
    options: Dict[str, Any] = {}
    if args.root:
        options["root"] = os.path.abspath(args.root)
    if args.port is not None:
        options["port"] = args.port
    if args.host:
        options["host"] = args.host
    if args.no_auto_port:
        options["auto_port"] = False
    if args.cors:
        options["cors"] = True
    if args.verbose:
        options["verbose"] = True
    if args.log_level:
        options["log_level"] = args.log_level

    https: Dict[str, Any] = {}
    if args.https:
        https["enabled"] = True
    if args.https_port is not None:
        https["port"] = args.https_port
    if args.domain:
        https["domain"] = args.domain
    if args.cert:
        https["cert_path"] = args.cert
    if args.key:
        https["key_path"] = args.key
    if https:
        options["https"] = https
    return options


def _setup_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("liveserver").setLevel(level)


def _print_event(event: ServerEvent) -> None:
    if event.type == ServerEventType.SERVER_STARTED:
        print()
        print(f"  Serving at   {event.data['local_url']}")
        print(f"  On network   {event.data['network_url']}")
        print("  Press Ctrl+C to stop")
        print()
    elif event.type == ServerEventType.PORT_IN_USE:
        print(f"  Port {event.data['port']} is busy, using {event.data['suggested_port']}")
    elif event.type == ServerEventType.CERTIFICATE_SELF_SIGNED_WARNING:
        print(f"  Using a self-signed certificate for {event.data['domain']}; your browser will warn about it")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    defaults = ServerConfig.from_env()
    options = options_from_args(args)
    _setup_logging(options.get("log_level", defaults.log_level))

    workspace = None if args.root or args.file else os.getcwd()
    manager = LiveServerManager(workspace_root=workspace, defaults=defaults)
    manager.subscribe(_print_event)

    response = manager.start(args.file, options)
    if not response.success:
        print(f"Error: {response.message}", file=sys.stderr)
        suggested = response.error.details.get("suggested_port") if response.error else None
        if suggested:
            print(f"Try --port {suggested}", file=sys.stderr)
        return 1

    stop_requested = threading.Event()

    def request_stop(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}")
        stop_requested.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    try:
        # Timed waits keep the main thread responsive to signals on Windows
        while not stop_requested.wait(0.5):
            pass
    finally:
        manager.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
