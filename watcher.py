"""Watches the previewed document and reports which markdown file changed.

The observer polls the document's parent directory every few tens of
milliseconds, which also catches editors that save by writing a temporary
file and renaming it over the original.

Known limitation: a single filesystem event can carry more than one path
(a move has a source and a destination). Only the first markdown path of an
event is reported, so a batch rename may drop notifications for the other
files in that event.
"""

import logging
import os
import queue

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers.polling import PollingObserver

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIXES = (".md", ".markdown")
RELEVANT_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}
DEFAULT_POLL_INTERVAL = 0.05

_CLOSED = object()


class WatchError(RuntimeError):
    pass


def is_markdown(path: str) -> bool:
    # case-sensitive on purpose: README.MD is not picked up
    return os.path.splitext(path)[1] in MARKDOWN_SUFFIXES


def event_paths(event) -> list:
    paths = [event.src_path]
    dest = getattr(event, "dest_path", "")
    if dest:
        paths.append(dest)
    return [os.fsdecode(p) for p in paths]


def first_markdown_path(paths):
    for path in paths:
        if is_markdown(path):
            return path
    return None


class MarkdownChangeHandler(FileSystemEventHandler):
    """Feeds at most one path per raw event into ``channel``."""

    def __init__(self, channel: queue.Queue):
        super().__init__()
        self.channel = channel

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in RELEVANT_EVENTS:
            return
        try:
            path = first_markdown_path(event_paths(event))
            if path is None:
                return
            logger.debug("File event %s: %s", event.event_type, path)
            self.channel.put(path)
        except Exception:
            # an exception escaping here would kill the observer thread
            logger.exception("Failed to handle file event %r", event)


class ChangeDetector:

    def __init__(self, path, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.path = os.path.abspath(os.fspath(path))
        self.directory = os.path.dirname(self.path)
        self.poll_interval = poll_interval
        self._channel = queue.Queue()
        self._observer = None

    @property
    def running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> "ChangeDetector":
        if not os.path.exists(self.path):
            raise WatchError(f"File '{self.path}' does not exist")
        if not os.access(self.directory, os.R_OK | os.X_OK):
            raise WatchError(f"Permission denied watching '{self.directory}'")

        observer = PollingObserver(timeout=self.poll_interval)
        try:
            observer.schedule(MarkdownChangeHandler(self._channel), self.directory, recursive=False)
            observer.start()
        except OSError as e:
            raise WatchError(f"Failed to watch '{self.path}': {e}") from e

        self._observer = observer
        logger.debug("Watching %s (poll every %.0f ms)", self.path, self.poll_interval * 1000)
        return self

    def stop(self, timeout: float = 2.0) -> None:
        """Stop watching and close the notification stream for good."""
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout)
        self._channel.put(_CLOSED)
        logger.debug("Stopped watching %s", self.path)

    def next_change(self, timeout=None):
        """Next changed path, or None once the stream is closed.

        Raises ``queue.Empty`` if ``timeout`` elapses first.
        """
        item = self._channel.get(timeout=timeout)
        if item is _CLOSED:
            # leave the marker for any later reader
            self._channel.put(_CLOSED)
            return None
        return item

    def changes(self):
        while True:
            path = self.next_change()
            if path is None:
                return
            yield path
