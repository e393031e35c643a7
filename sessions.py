"""Connected viewers and the render/broadcast loop that keeps them current."""

import logging
import os
import queue
import threading
import time
import uuid

from renderer import MarkdownRenderer, RenderResult

logger = logging.getLogger(__name__)


class Viewer:
    """One connected client. Events queue up here until the transport sends them."""

    def __init__(self):
        self.id = uuid.uuid4().hex
        self.created = time.time()
        self.closed = False
        self._outbox = queue.Queue()

    def __repr__(self):
        return f"<Viewer {self.id[:8]}>"

    def send(self, event: str, data=None) -> bool:
        if self.closed:
            return False
        self._outbox.put((event, data))
        return True

    def receive(self, timeout=None):
        """Next ``(event, data)`` pair, or None after close.

        Raises ``queue.Empty`` when ``timeout`` elapses with nothing queued.
        """
        item = self._outbox.get(timeout=timeout)
        if item is None:
            self._outbox.put(None)
        return item

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._outbox.put(None)


class SessionRegistry:

    def __init__(self, document_path):
        self._document_path = os.path.abspath(os.fspath(document_path))
        self._viewers: dict[str, Viewer] = {}
        # mutation and snapshot copies only; readers iterate the copy unlocked
        self._lock = threading.Lock()

    @property
    def document_path(self) -> str:
        return self._document_path

    @property
    def title(self) -> str:
        return os.path.basename(self._document_path)

    def add(self, viewer: Viewer) -> None:
        with self._lock:
            self._viewers[viewer.id] = viewer

    def remove(self, viewer: Viewer) -> bool:
        with self._lock:
            return self._viewers.pop(viewer.id, None) is not None

    def snapshot(self) -> list:
        with self._lock:
            return list(self._viewers.values())

    def __contains__(self, viewer) -> bool:
        with self._lock:
            return viewer.id in self._viewers

    def __len__(self) -> int:
        with self._lock:
            return len(self._viewers)


class BroadcastCoordinator:
    """Renders the document and fans the result out to every viewer.

    Renders happen one at a time under ``_render_lock``, both for change
    notifications and for connect-time snapshots, so a viewer never receives
    an older render after a newer one.
    """

    def __init__(self, registry: SessionRegistry, renderer: MarkdownRenderer = None):
        self.registry = registry
        self.renderer = renderer or MarkdownRenderer()
        self._render_lock = threading.Lock()
        self._thread = None

    def read_document(self):
        path = self.registry.document_path
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as e:
            logger.error("Failed to read file %s: %s", path, e)
            return None

    def render_document(self):
        text = self.read_document()
        if text is None:
            return None
        return self.renderer.render_result(self.registry.title, text)

    def connect(self, viewer: Viewer) -> None:
        with self._render_lock:
            self.registry.add(viewer)
            viewer.send("title", self.registry.title)
            result = self.render_document()
            if result is not None:
                viewer.send("content", result.html)
        logger.info("Viewer connected: %s (%d total)", viewer.id, len(self.registry))

    def disconnect(self, viewer: Viewer) -> None:
        viewer.close()
        if self.registry.remove(viewer):
            logger.info("Viewer disconnected: %s (%d left)", viewer.id, len(self.registry))

    def broadcast(self, event: str, data=None) -> int:
        delivered = 0
        for viewer in self.registry.snapshot():
            try:
                if viewer.send(event, data):
                    delivered += 1
            except Exception:
                logger.exception("Failed to deliver %s to viewer %s", event, viewer.id)
        return delivered

    def on_change(self, path: str):
        """Re-render and broadcast if ``path`` is the active document."""
        if os.path.normpath(path) != self.registry.document_path:
            logger.debug("Ignoring change to %s", path)
            return None
        with self._render_lock:
            result: RenderResult = self.render_document()
            if result is None:
                return None
            count = self.broadcast("content", result.html)
        logger.debug("Sent update to %d viewer(s)", count)
        return result

    def run(self, changes) -> None:
        for path in changes:
            logger.info("File changed: %s", path)
            self.on_change(path)
        logger.debug("Change stream closed, broadcast loop exiting")

    def start(self, detector) -> threading.Thread:
        self._thread = threading.Thread(
            target=self.run, args=(detector.changes(),), name="livedown-broadcast", daemon=True
        )
        self._thread.start()
        return self._thread

    def join(self, timeout=None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def shutdown(self) -> int:
        """Tell every viewer to close, then drop them all."""
        viewers = self.registry.snapshot()
        for viewer in viewers:
            viewer.send("kill")
            self.disconnect(viewer)
        logger.info("Sent kill to %d viewer(s)", len(viewers))
        return len(viewers)
