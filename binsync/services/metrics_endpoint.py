"""
HTTP endpoint exposing /metrics and /health
"""

import json
import threading
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Optional

import structlog

from .metrics_service import MetricsService


class MetricsHandler(BaseHTTPRequestHandler):
    """HTTP handler for metrics endpoint"""

    def __init__(self, metrics_service: MetricsService, *args, **kwargs):
        self.metrics_service = metrics_service
        self.logger = structlog.get_logger()
        super().__init__(*args, **kwargs)

    def do_GET(self):
        if self.path == '/metrics':
            body = self.metrics_service.get_metrics().encode('utf-8')
            self._respond(200, self.metrics_service.get_content_type(), body)
        elif self.path == '/health':
            health = self.metrics_service.get_health_status()
            status = 200 if health["status"] == "healthy" else 503
            self._respond(status, 'application/json', json.dumps(health).encode('utf-8'))
        else:
            self._respond(404, 'text/plain', b'Not Found')

    def _respond(self, status: int, content_type: str, body: bytes) -> None:
        self.send_response(status)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        self.logger.debug("HTTP request", message=format % args)


class MetricsEndpoint:
    """Serves Prometheus metrics from a background thread"""

    def __init__(self, metrics_service: MetricsService, host: str = '0.0.0.0', port: int = 8080):
        self.metrics_service = metrics_service
        self.host = host
        self.port = port
        self.logger = structlog.get_logger()
        self._server: Optional[ThreadingHTTPServer] = None
        self._server_thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._server_thread and self._server_thread.is_alive():
            self.logger.warning("Metrics endpoint already running")
            return

        def handler_factory(*args, **kwargs):
            return MetricsHandler(self.metrics_service, *args, **kwargs)

        self._server = ThreadingHTTPServer((self.host, self.port), handler_factory)
        self._server_thread = threading.Thread(
            target=self._server.serve_forever,
            name="metrics_endpoint",
            daemon=True
        )
        self._server_thread.start()
        self.logger.info("Metrics endpoint started",
                         metrics_url=f"http://{self.host}:{self.port}/metrics",
                         health_url=f"http://{self.host}:{self.port}/health")

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._server_thread and self._server_thread.is_alive():
            self._server_thread.join(timeout=5.0)
            if self._server_thread.is_alive():
                self.logger.warning("Metrics endpoint thread did not stop gracefully")
        self._server = None
        self.logger.info("Metrics endpoint stopped")

    def is_running(self) -> bool:
        return self._server_thread is not None and self._server_thread.is_alive()
