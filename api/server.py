"""HTTP server entry point for the Slack assistant relay."""

import signal
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

from api.routes import resolve
from src.services.background_jobs import get_background_jobs
from src.services.slack_client import get_slack_client
from src.services.supabase_client import close_supabase_client
from src.services.thread_store import get_thread_store
from src.utils.errors import ConfigurationError
from src.utils.logging import get_structured_logger
from src.utils.logging_config import LoggingConfig
from src.utils.responses import json_response
from src.utils.settings import get_settings, validate_env_vars

logger = get_structured_logger(__name__)

MAX_BODY_BYTES = 1024 * 1024


class RequestBodyError(Exception):
    """The request body cannot be read; carries the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


def build_request(method: str, raw_path: str, headers, body: bytes) -> dict:
    parts = urlsplit(raw_path)
    query = {key: values[0] for key, values in parse_qs(parts.query).items() if values}
    return {
        "method": method,
        "path": parts.path,
        "query": query,
        "headers": {key.lower(): value for key, value in headers.items()},
        "body": body,
    }


def dispatch(request: dict) -> dict:
    """Route a request dict to its endpoint handler."""
    route_handler, allowed = resolve(request["method"], request["path"])
    if route_handler is None:
        if allowed:
            return json_response(405, {"error": "Method not allowed"}, {"Allow": ", ".join(allowed)})
        return json_response(404, {"error": "Not found"})

    try:
        return route_handler(request)
    except Exception as e:
        logger.error("Unhandled error in route", path=request["path"], error=str(e), exc_info=True)
        return json_response(500, {"error": "Internal server error"})


class RelayRequestHandler(BaseHTTPRequestHandler):
    """Adapts http.server requests to the endpoint handlers."""

    server_version = "SlackAssistantRelay/1.0"

    def _read_body(self) -> bytes:
        """Read the request body, or raise RequestBodyError with the status to answer."""
        raw_length = self.headers.get("Content-Length") or "0"
        try:
            content_length = int(raw_length)
        except ValueError:
            raise RequestBodyError(400, "Invalid Content-Length header")
        if content_length < 0:
            raise RequestBodyError(400, "Invalid Content-Length header")
        if content_length > MAX_BODY_BYTES:
            logger.warning("Request body too large", content_length=content_length, limit=MAX_BODY_BYTES)
            raise RequestBodyError(413, "Request body too large")
        return self.rfile.read(content_length) if content_length else b""

    def _write(self, response: dict) -> None:
        body = response.get("body") or ""
        payload = body.encode("utf-8") if isinstance(body, str) else body

        self.send_response(response["statusCode"])
        for name, value in (response.get("headers") or {}).items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def _handle(self, method: str) -> None:
        try:
            body = self._read_body() if method == "POST" else b""
        except RequestBodyError as e:
            # The unread body makes the connection unusable
            self.close_connection = True
            self._write(json_response(e.status_code, {"error": str(e)}))
            return
        request = build_request(method, self.path, self.headers, body)
        self._write(dispatch(request))

    def do_GET(self):
        self._handle("GET")

    def do_POST(self):
        self._handle("POST")

    def log_message(self, format, *args):
        logger.debug("HTTP request", client=self.client_address[0], request_line=format % args)


def create_server(port: int, host: str = "") -> ThreadingHTTPServer:
    server = ThreadingHTTPServer((host, port), RelayRequestHandler)
    server.daemon_threads = True
    return server


def _install_signal_handlers(server: ThreadingHTTPServer) -> None:
    def _shutdown(signum, frame):
        logger.info("Shutdown signal received", signal=signal.Signals(signum).name)
        # serve_forever runs on this thread; shutdown() blocks until it returns
        threading.Thread(target=server.shutdown, daemon=True).start()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)


def main() -> None:
    LoggingConfig.setup_logging()

    try:
        validate_env_vars()
        settings = get_settings()
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        sys.exit(1)

    jobs = get_background_jobs()
    jobs.start()

    # Loads (or creates) the thread map before the first request
    get_thread_store()

    if not jobs.run(get_slack_client().validate_token(), timeout=30):
        logger.warning("Slack bot token could not be validated; outbound messages will fail")

    server = create_server(settings.port)
    _install_signal_handlers(server)
    logger.info("Server listening", port=settings.port, environment=settings.environment)

    try:
        server.serve_forever()
    finally:
        server.server_close()
        jobs.shutdown(wait=True)
        close_supabase_client()
        logger.info("Server stopped")


if __name__ == "__main__":
    main()
