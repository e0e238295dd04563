"""Background worker bridging the scanner to the Qt GUI."""
import logging

from PySide6.QtCore import QObject, Signal

from scraper.confirmation import EPISODES, SERIES, ConfirmationRequest
from scraper.scanner import ScanListener, ScannerService

log = logging.getLogger(__name__)

MODE_SCAN = "scan"
MODE_SELECTED = "selected"
MODE_IDENTIFY = "identify"


class QtLogHandler(logging.Handler):
    """Forwards log records to a ``Signal(str)``."""

    def __init__(self, signal, level=logging.INFO):
        super().__init__(level)
        self._signal = signal
        self.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))

    def emit(self, record):
        try:
            self._signal.emit(self.format(record))
        except Exception:
            self.handleError(record)


class _SignalListener(ScanListener):
    """Re-emits scanner events as worker signals."""

    def __init__(self, worker: "ScanWorker"):
        self._worker = worker

    def unidentified(self, files):
        self._worker.unidentified.emit(list(files))

    def operation_progress(self, percent, message, finished):
        self._worker.operation_progress.emit(percent, message, finished)

    def series_finished(self, report):
        self._worker.series_finished.emit(report)


class ScanWorker(QObject):
    """Runs one scanner entry point; meant to be moved to a QThread.

    Confirmation requests are emitted as signals carrying the request
    payload plus its ``token``.  The main thread answers with
    :meth:`respond`; any number of requests may be outstanding.
    """

    # Signals
    started = Signal()
    log = Signal(str)
    series_confirmation_requested = Signal(object)  # payload dict + "token"
    episodes_confirmation_requested = Signal(object)  # payload dict + "token"
    operation_progress = Signal(int, str, bool)  # percent, message, finished
    unidentified = Signal(object)  # list[FileEntry]
    series_finished = Signal(object)  # BatchReport
    finished = Signal()
    error = Signal(str)

    def __init__(
        self,
        scanner: ScannerService,
        source,
        mode: str = MODE_SCAN,
        path: str = "/",
        paths: list[str] | None = None,
    ):
        super().__init__()
        self.scanner = scanner
        self.source = source
        self.mode = mode
        self.path = path
        self.paths = list(paths or [])
        self._cancelled = False

        scanner.listener = _SignalListener(self)
        scanner.broker.set_listener(self._on_request)

    def cancel(self):
        """Cancel the scan and every outstanding confirmation."""
        self._cancelled = True
        self.scanner.broker.cancel_all()

    def respond(self, token: str, response) -> bool:
        """Called from main thread to provide the user's decision."""
        return self.scanner.broker.respond(token, response)

    def _on_request(self, request: ConfirmationRequest):
        if self._cancelled:
            self.scanner.broker.cancel(request.token)
            return
        payload = dict(request.payload, token=request.token)
        if request.kind == SERIES:
            self.series_confirmation_requested.emit(payload)
        elif request.kind == EPISODES:
            self.episodes_confirmation_requested.emit(payload)
        else:
            log.warning("Unknown request kind %s", request.kind)
            self.scanner.broker.cancel(request.token)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self):
        """Execute the scan operation."""
        handler = QtLogHandler(self.log)
        package_logger = logging.getLogger("scraper")
        if package_logger.level == logging.NOTSET:
            package_logger.setLevel(logging.INFO)
        package_logger.addHandler(handler)
        try:
            self.started.emit()
            if self.mode == MODE_IDENTIFY:
                accepted = self.scanner.identify_single_file(self.source, self.path)
            elif self.mode == MODE_SELECTED:
                accepted = self.scanner.scan_selected_files(self.source, self.paths)
            else:
                accepted = self.scanner.scan_source(self.source, self.path)
            if not accepted:
                self.log.emit("[WARN] A scan is already running.")
        except Exception as e:
            self.error.emit(str(e))
        finally:
            package_logger.removeHandler(handler)
            self.finished.emit()
