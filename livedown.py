#!/usr/bin/env python3
"""Live markdown previews for your favourite editor.

    livedown start README.md --open
    livedown stop
"""
import argparse
import logging
import shlex
import subprocess
import sys
import threading
import webbrowser
from pathlib import Path

import requests

from renderer import MarkdownRenderer
from server import AssetsMissing, create_app, make_http_server
from sessions import BroadcastCoordinator, SessionRegistry
from settings import load_config
from watcher import ChangeDetector, WatchError

__version__ = "0.1.0"

logger = logging.getLogger("livedown")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def split_command_line(cmd) -> list:
    """Split on spaces unless quoted: "'google chrome' --incognito" -> ['google chrome', '--incognito']."""
    if not cmd:
        return []
    return shlex.split(cmd)


def open_browser(url: str, browser_cmd=None) -> bool:
    try:
        if browser_cmd:
            subprocess.Popen(split_command_line(browser_cmd) + [url])
        elif not webbrowser.open(url):
            raise webbrowser.Error("no runnable browser found")
    except (OSError, ValueError, webbrowser.Error) as e:
        logger.warning("Failed to open browser: %s", e)
        print(f"Please visit {url}")
        return False
    return True


def start(args) -> int:
    path = Path(args.file)
    if not path.exists():
        print(f"Error: File '{path}' does not exist", file=sys.stderr)
        return 1
    path = path.resolve()

    cfg = load_config(args.config, port=args.port)
    registry = SessionRegistry(path)
    coordinator = BroadcastCoordinator(registry, MarkdownRenderer(cfg["highlight_style"]))
    detector = ChangeDetector(path, poll_interval=cfg["poll_interval"])

    try:
        app = create_app(coordinator, heartbeat=cfg["heartbeat"], shutdown_delay=cfg["shutdown_delay"])
        detector.start()
        httpd = make_http_server(app, cfg["host"], cfg["port"])
    except (AssetsMissing, WatchError, OSError) as e:
        logger.error("Cannot start server: %s", e)
        detector.stop()
        return 1

    coordinator.start(detector)
    url = f"http://localhost:{cfg['port']}"
    logger.info("Serving %s on %s", path, url)
    if args.open:
        timer = threading.Timer(cfg["open_delay"], open_browser, (url, args.browser))
        timer.daemon = True
        timer.start()
    else:
        print(f"Markdown preview available at {url}")

    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        coordinator.shutdown()
        httpd.server_close()
        detector.stop()
        coordinator.join(timeout=1.0)
    logger.info("Server stopped")
    return 0


def stop(args) -> int:
    cfg = load_config(args.config, port=args.port)
    port = cfg["port"]
    try:
        requests.delete(f"http://localhost:{port}", timeout=5)
    except requests.RequestException:
        print(f"Cannot stop the server. Is it running on port {port}?", file=sys.stderr)
        return 1
    logger.info("Server on port %d stopped", port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="livedown", description="Live Markdown previews for your favourite editor")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to a livedown.config.json file")
    sub = parser.add_subparsers(dest="command")

    start_p = sub.add_parser("start", help="Start the Markdown preview server")
    start_p.add_argument("file", help="Markdown file to preview")
    start_p.add_argument("-p", "--port", type=int, help="Port to run the server on (default 1337)")
    start_p.add_argument("-o", "--open", action="store_true", help="Open the preview in a browser")
    start_p.add_argument("-b", "--browser", metavar="COMMAND", help="Browser command to use")
    start_p.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    start_p.set_defaults(func=start)

    stop_p = sub.add_parser("stop", help="Stop the Markdown preview server")
    stop_p.add_argument("-p", "--port", type=int, help="Port of the server to stop (default 1337)")
    stop_p.set_defaults(func=stop)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help(sys.stderr)
        return 1
    setup_logging(getattr(args, "verbose", False))
    return args.func(args)


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
