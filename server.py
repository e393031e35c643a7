import json as _json
import logging
import mimetypes
import os
import queue
import signal
import threading
from pathlib import Path

from flask import Flask, Response, abort, send_file, send_from_directory, stream_with_context
from flask_cors import CORS
from werkzeug.security import safe_join
from werkzeug.serving import make_server

from sessions import BroadcastCoordinator, Viewer

logger = logging.getLogger(__name__)

PUBLIC = Path(__file__).resolve().parent / "public"
REQUIRED_ASSETS = ("index.html", "client.js", "style.css")

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


class AssetsMissing(RuntimeError):
    pass


def check_assets(assets_dir: Path) -> None:
    missing = [name for name in REQUIRED_ASSETS if not (assets_dir / name).is_file()]
    if missing:
        raise AssetsMissing(f"Bundled viewer assets missing from {assets_dir}: {', '.join(missing)}")


def format_event(event: str, data=None) -> str:
    # JSON keeps multi-line HTML on a single data: line
    return f"event: {event}\ndata: {_json.dumps(data)}\n\n"


def viewer_stream(coordinator: BroadcastCoordinator, viewer: Viewer, heartbeat: float = 15):
    """SSE frames for one viewer, from its connect snapshot until kill or disconnect."""
    coordinator.connect(viewer)
    try:
        while True:
            try:
                item = viewer.receive(timeout=heartbeat)
            except queue.Empty:
                yield ": keep-alive\n\n"
                continue
            if item is None:
                return
            event, data = item
            yield format_event(event, data)
    finally:
        coordinator.disconnect(viewer)


def _interrupt_process():
    os.kill(os.getpid(), signal.SIGINT)


def _resolve_asset(roots, asset_path: str):
    # dotfiles and dot-directories (.env, .git/) are never served
    if any(part.startswith(".") for part in asset_path.replace("\\", "/").split("/")):
        return None
    for root in roots:
        target = safe_join(str(root), asset_path)
        if target is not None and os.path.isfile(target):
            return target
    return None


def create_app(coordinator: BroadcastCoordinator, assets_dir: Path = PUBLIC, heartbeat: float = 15,
               shutdown_delay: float = 0.1, on_shutdown=_interrupt_process) -> Flask:
    assets_dir = Path(assets_dir)
    check_assets(assets_dir)
    document_dir = os.path.dirname(coordinator.registry.document_path)

    app = Flask(__name__, static_folder=None)
    # the viewer shell, push channel and shutdown only; files next to the
    # document stay same-origin
    CORS(app, resources={r"/$": {}, r"/events$": {}})

    @app.route("/")
    def index():
        return send_from_directory(assets_dir, "index.html")

    @app.route("/events")
    def events():
        stream = viewer_stream(coordinator, Viewer(), heartbeat)
        return Response(stream_with_context(stream), mimetype="text/event-stream", headers=_SSE_HEADERS)

    @app.route("/", methods=["DELETE"])
    def shutdown():
        logger.info("Shutdown requested")
        coordinator.shutdown()
        timer = threading.Timer(shutdown_delay, on_shutdown)
        timer.daemon = True
        timer.start()
        return "", 200

    @app.route("/<path:asset_path>")
    def asset(asset_path):
        target = _resolve_asset((assets_dir, document_dir), asset_path)
        if target is None:
            abort(404)
        mime, _ = mimetypes.guess_type(target)
        return send_file(target, mimetype=mime)

    return app


def make_http_server(app: Flask, host: str, port: int):
    """Bind the listening socket; raises OSError when the port is taken."""
    return make_server(host, port, app, threaded=True)
