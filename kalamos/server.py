"""Development server for Kalamos.

Serves the output directory and rebuilds incrementally while you edit:
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches the project and feeds every filesystem change to the scheduler.
- A build loop runs one incremental pass per tick when changes are queued.

Pages are not reloaded in the browser; refresh to see a rebuild.

Key classes:
- DevServer: Main class for running the development server.
- _OutputHandler: HTTP request handler that disables caching and enforces 404s.
- _ChangeHandler: File system event handler converting events to ChangeEvents.
"""

from __future__ import annotations

import functools
import logging
import threading
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .build import Site
from .report import BuildReport
from .scheduler import ChangeEvent, ChangeKind
from .utils import is_relative_to

logger = logging.getLogger(__name__)


class _OutputHandler(SimpleHTTPRequestHandler):
    """Serves built files with no-cache headers and real 404s."""

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def _serve_404(self):
        """Serve 404.html (when present) with a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.is_file():
            encoded = error_page.read_bytes()
            self.send_response(404)
            self.send_header("Content-type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            if not (path_obj / "index.html").is_file():
                return self._serve_404()
        elif not path_obj.exists():
            return self._serve_404()
        return super().send_head()


def events_for(event: FileSystemEvent) -> list[ChangeEvent]:
    """Translate one watchdog event into scheduler change events.

    A move becomes a removal of the source plus an addition of the
    destination. Directory creations and modifications carry no
    information the file events do not, so only directory deletions (and
    moves) are passed on.
    """
    kind = event.event_type
    src = Path(event.src_path)
    if kind == "moved":
        return [
            ChangeEvent(src, ChangeKind.REMOVED),
            ChangeEvent(Path(event.dest_path), ChangeKind.ADDED),
        ]
    if kind == "deleted":
        return [ChangeEvent(src, ChangeKind.REMOVED)]
    if event.is_directory:
        return []
    if kind == "created":
        return [ChangeEvent(src, ChangeKind.ADDED)]
    if kind in ("modified", "closed"):
        return [ChangeEvent(src, ChangeKind.MODIFIED)]
    return []


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer):
        super().__init__()
        self.server = server

    def on_any_event(self, event):
        changes = [c for c in events_for(event) if not self.server.ignores(c.path)]
        if changes:
            self.server.site.scheduler.submit(changes)


class DevServer:
    """Development server with incremental rebuilds.

    Attributes:
        site: The project being served.
        http_port: Port for the HTTP server.
        output_dir: Directory being served.
    """

    def __init__(self, project_root: Path, http_port: int | None = None):
        """Initialize the development server.

        Args:
            project_root: Root directory of the project.
            http_port: Optional override for the configured port.

        Raises:
            ConfigError: The configuration is invalid.
        """
        self.site = Site.open(project_root)
        self.http_port = int(http_port or self.site.config.port)
        self.output_dir = self.site.config.output_dir
        self._observer: Observer | None = None
        self._httpd: ThreadingHTTPServer | None = None
        self._stop = threading.Event()

    def ignores(self, path: Path) -> bool:
        """Changes the build itself causes, or that no build cares about."""
        path = path.resolve()
        config = self.site.config
        if is_relative_to(path, config.output_dir):
            return True
        if path.name.startswith(config.cache_file.name):
            return True
        return any(part in (".git", "__pycache__", "node_modules") for part in path.parts)

    def start(self) -> None:  # pragma: no cover - integration path
        self.on_report(self.site.scheduler.startup())
        self._start_watcher()
        threading.Thread(target=self._start_http, daemon=True).start()
        try:
            self.build_loop()
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def stop(self) -> None:
        self._stop.set()
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._httpd:
            self._httpd.shutdown()
            self._httpd = None

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler = functools.partial(_OutputHandler, directory=str(self.output_dir))
        self._httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at http://localhost:%d", self.output_dir, self.http_port)
        self._httpd.serve_forever()

    def _start_watcher(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        observer.schedule(handler, str(self.site.config.project_root), recursive=True)
        observer.start()
        self._observer = observer

    def tick(self) -> BuildReport | None:
        """Run one incremental pass if changes are queued."""
        report = self.site.scheduler.run_pending()
        if report is not None:
            self.on_report(report)
        return report

    def build_loop(self) -> None:
        """Tick until stopped; events arriving within a tick form one batch."""
        interval = self.site.config.tick_seconds
        while not self._stop.wait(interval):
            self.tick()

    def on_report(self, report: BuildReport) -> None:
        for ident, message in report.errors():
            logger.error("%s: %s", ident, message)
