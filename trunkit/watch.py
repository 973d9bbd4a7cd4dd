"""Watch the file system and rebuild when sources change."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

log = logging.getLogger(__name__)

BLACKLIST = frozenset({".git"})
DEFAULT_DEBOUNCE = 1.0
_POLL_INTERVAL = 0.1
_HANDLED_EVENTS = frozenset({"created", "modified", "deleted", "moved"})


def is_blacklisted(path: Path | str) -> bool:
    """Whether any segment of ``path`` is on the watcher's blacklist."""
    return any(part in BLACKLIST for part in Path(path).parts)


def _canonical_or_given(path: Path | str) -> Path:
    path = Path(path)
    try:
        return path.resolve(strict=True)
    except OSError:
        return path


class _Forwarder(FileSystemEventHandler):
    def __init__(self, events: queue.Queue[Path]) -> None:
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in _HANDLED_EVENTS:
            return
        raw = event.dest_path if event.event_type == "moved" else event.src_path
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="surrogateescape")
        self._events.put(Path(raw))


class WatchSystem:
    """Runs ``build`` whenever a file under the watched paths changes."""

    def __init__(
        self,
        paths: Iterable[Path | str],
        build: Callable[[], object],
        *,
        ignored_paths: Iterable[Path | str] = (),
        build_done: Callable[[], object] | None = None,
        debounce: float = DEFAULT_DEBOUNCE,
    ) -> None:
        self._build = build
        self._build_done = build_done
        self.debounce = debounce
        self._lock = threading.Lock()
        self.ignored_paths: list[Path] = []
        for ignored in ignored_paths:
            self.update_ignore_list(ignored)

        self._events: queue.Queue[Path] = queue.Queue()
        self._observer = Observer()
        handler = _Forwarder(self._events)
        for path in paths:
            path = Path(path)
            message = f"failed to watch {str(path)!r} for file system changes"
            if not path.exists():
                raise OSError(message)
            try:
                self._observer.schedule(handler, str(path), recursive=True)
            except OSError as exc:
                raise OSError(message) from exc

    def build(self) -> object:
        """Run a build."""
        return self._build()

    def is_ignored(self, path: Path | str) -> bool:
        """Whether ``path`` or one of its ancestors is on the ignore list."""
        path = Path(path)
        with self._lock:
            ignored = list(self.ignored_paths)
        return any(candidate in ignored for candidate in (path, *path.parents))

    def handle_event_path(self, path: Path | str) -> bool:
        """React to a change of ``path``; return whether a build was run."""
        try:
            ev_path = Path(path).resolve(strict=True)
        except OSError:
            # Removed resources, such as staging entries, cannot be resolved.
            return False
        if self.is_ignored(ev_path) or is_blacklisted(ev_path):
            return False

        log.debug("change detected in %s", ev_path)
        try:
            self.build()
        except Exception as exc:
            log.error("build failed: %s", exc)
        if self._build_done is not None:
            self._build_done()
        return True

    def update_ignore_list(self, path: Path | str) -> None:
        """Add ``path`` (canonical where possible) to the ignore list."""
        path = _canonical_or_given(path)
        with self._lock:
            if path not in self.ignored_paths:
                self.ignored_paths.append(path)

    def _collect_burst(self, first: Path) -> list[Path]:
        paths = [first]
        deadline = time.monotonic() + self.debounce
        while (remaining := deadline - time.monotonic()) > 0:
            try:
                paths.append(self._events.get(timeout=remaining))
            except queue.Empty:
                break
        return list(dict.fromkeys(paths))

    def run(self, shutdown: threading.Event) -> None:
        """Watch and rebuild until ``shutdown`` is set."""
        self._observer.start()
        try:
            while not shutdown.is_set():
                try:
                    first = self._events.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                for path in self._collect_burst(first):
                    if shutdown.is_set():
                        break
                    self.handle_event_path(path)
        finally:
            self._observer.stop()
            self._observer.join()
        log.debug("watcher system has shut down")