import json
import logging
import threading
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from .accounts import get_associated_vote_accounts
from .collector import SolanaCollector
from .config import ExporterConfig
from .context import Context
from .rpc import COMMITMENT_FINALIZED, RPCClient
from .slots import SlotWatcher
from .types import FatalError

log = logging.getLogger("solana-exporter.daemon")


class ExporterDaemon:
    def __init__(self, config: ExporterConfig, provider=None):
        self.config = config
        self.provider = provider or RPCClient(config.rpc_url, config.http_timeout)
        self.ctx = Context()
        self.registry: Optional[CollectorRegistry] = None
        self.collector: Optional[SolanaCollector] = None
        self.slot_watcher: Optional[SlotWatcher] = None
        self.watcher_thread: Optional[threading.Thread] = None
        self.httpd: Optional[ThreadingHTTPServer] = None
        self.fatal_error: Optional[FatalError] = None
        self._fatal_lock = threading.Lock()

    def setup(self) -> None:
        """Resolve node identity and vote accounts, then build the collectors.

        Any failure here is fatal to startup and propagates to the caller.
        """
        votekeys = get_associated_vote_accounts(
            self.ctx, self.provider, COMMITMENT_FINALIZED, self.config.nodekeys
        )
        identity = self.provider.get_identity(self.ctx)
        log.info(f"node identity is {identity}")
        if self.config.nodekeys:
            log.info(f"tracking vote accounts {votekeys} for nodekeys {self.config.nodekeys}")

        self.registry = CollectorRegistry()
        self.collector = SolanaCollector(
            self.provider,
            identity,
            balance_addresses=self.config.balance_addresses,
            nodekeys=self.config.nodekeys,
            votekeys=votekeys,
            parent=self.ctx,
        )
        self.registry.register(self.collector)
        self.slot_watcher = SlotWatcher(self.provider, registry=self.registry)

    def render_metrics(self) -> bytes:
        return generate_latest(self.registry)

    def fail(self, err: FatalError) -> None:
        """Record a fatal error and shut the server down."""
        with self._fatal_lock:
            if self.fatal_error is not None:
                return
            self.fatal_error = err
        log.critical(f"fatal error, shutting down: {err}")
        self.ctx.cancel()
        if self.httpd:
            # shutdown() blocks until serve_forever() returns, so never call
            # it from the serving thread itself.
            threading.Thread(target=self.httpd.shutdown, name="shutdown", daemon=True).start()

    def _watch_slots(self) -> None:
        try:
            self.slot_watcher.watch_slots(self.ctx.child(), self.config.slot_pace)
        except FatalError as e:
            self.fail(e)

    def start(self) -> None:
        """Start the slot watcher and serve metrics until stopped.

        Raises:
            FatalError: if a scrape or the watcher hit a fatal error.
        """
        if self.collector is None:
            self.setup()

        # The server must exist before anything can call fail().
        addr = (self.config.host, self.config.port)
        self.httpd = ThreadingHTTPServer(addr, self._make_handler())

        self.watcher_thread = threading.Thread(
            target=self._watch_slots,
            name="slot-watcher",
            daemon=True
        )
        self.watcher_thread.start()

        log.info(f"listening on {addr[0]}:{addr[1]}")
        try:
            if self.fatal_error is None:
                self.httpd.serve_forever()
        finally:
            self.stop()
        if self.fatal_error is not None:
            raise self.fatal_error

    def stop(self) -> None:
        """Stop the daemon and clean up."""
        self.ctx.cancel()
        if self.watcher_thread:
            self.watcher_thread.join(timeout=5)
        if self.httpd:
            self.httpd.server_close()

    def _make_handler(self):
        """Create a request handler bound to this daemon."""
        daemon = self

        class ExporterRequestHandler(BaseHTTPRequestHandler):
            routes = {
                "/metrics": "serve_metrics",
                "/healthz": "serve_healthz",
            }

            def do_GET(self):
                route = self.routes.get(self.path.split("?", 1)[0])
                if route is None:
                    body = json.dumps({"error": "Not found", "endpoints": list(self.routes)})
                    self.reply(404, body.encode(), "application/json")
                    return
                getattr(self, route)()

            def reply(self, status: int, body: bytes, content_type: str) -> None:
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def serve_metrics(self):
                try:
                    data = daemon.render_metrics()
                except FatalError as e:
                    daemon.fail(e)
                    self.reply(500, f"fatal: {e}\n".encode(), "text/plain; charset=utf-8")
                    return
                self.reply(200, data, CONTENT_TYPE_LATEST)

            def serve_healthz(self):
                if daemon.fatal_error is not None:
                    self.reply(503, f"fatal: {daemon.fatal_error}\n".encode(), "text/plain; charset=utf-8")
                    return
                self.reply(200, b"ok\n", "text/plain; charset=utf-8")

            def log_message(self, fmt, *args):
                log.debug(f"{self.client_address[0]} {self.command} {self.path}: {fmt % args}")

        return ExporterRequestHandler
