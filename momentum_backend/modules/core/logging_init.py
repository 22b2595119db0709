import sys, io, os, time, logging

from flask import g, request

logger = logging.getLogger("momentum_backend.access")

QUIET_PATHS = ("/health", "/healthz", "/readyz")


class SafeFormatter(logging.Formatter):
    def format(self, record):
        msg = super().format(record)
        try:
            enc = getattr(sys.stdout, "encoding", None) or "utf-8"
            msg = msg.encode(enc, errors="replace").decode(enc, errors="replace")
        except (LookupError, UnicodeError):
            msg = msg.encode("ascii", errors="replace").decode("ascii", errors="replace")
        return msg


def init_safe_logging(level=logging.INFO):
    """Initialize safe logging that never crashes on unicode"""
    try:
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")
        else:
            sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
            sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding="utf-8", errors="replace")
    except (AttributeError, ValueError, io.UnsupportedOperation):
        pass

    os.environ.setdefault("PYTHONIOENCODING", "utf-8")

    root = logging.getLogger()
    if not root.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(SafeFormatter("%(asctime)s %(levelname)-5s %(name)s :: %(message)s"))
        root.addHandler(h)
    root.setLevel(level)


def init_request_logging(app):
    """One access-log line per request: method, path, status, duration, client ip"""

    @app.before_request
    def _start_timer():
        g._request_started = time.perf_counter()

    @app.after_request
    def _log_request(response):
        started = g.pop("_request_started", None)
        duration_ms = (time.perf_counter() - started) * 1000 if started else 0.0
        level = logging.DEBUG if request.path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            "%s %s %s %.1fms %s",
            request.method,
            request.path,
            response.status_code,
            duration_ms,
            request.remote_addr or "-",
        )
        return response
