"""Network listener for the outbound gateway.

Binds the aiohttp application to a TCP socket, optionally behind TLS, and
owns the runner lifecycle. Routes and hooks are registered by ``Gateway``.
"""

import logging
import ssl

from aiohttp import web

from outbound_gateway.core.config import ServerConfig

logger = logging.getLogger(__name__)


class HTTPServer:
    """Listener serving a gateway ``web.Application``.

    The application itself is built here so that inbound limits
    (body size, keep-alive) come from ``ServerConfig`` in one place.
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self.app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._ssl_context: ssl.SSLContext | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    @property
    def url(self) -> str:
        scheme = "https" if self._ssl_context else "http"
        return f"{scheme}://{self.config.host}:{self.config.port}"

    def create_app(self) -> web.Application:
        """Build an empty application carrying the inbound limits."""
        self.app = web.Application(
            client_max_size=self.config.client_max_size,
            handler_args={"keepalive_timeout": self.config.keepalive_timeout},
        )
        return self.app

    def _load_ssl_context(self) -> ssl.SSLContext | None:
        if not self.config.tls_enabled:
            return None
        if not (self.config.tls_cert_path and self.config.tls_key_path):
            logger.warning("TLS requested without certificate and key; serving plain HTTP")
            return None

        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.load_cert_chain(self.config.tls_cert_path, self.config.tls_key_path)
        return context

    async def start(self) -> None:
        """Bind the listener.

        Raises:
            RuntimeError: If the listener is already bound
        """
        if self.is_running:
            raise RuntimeError("Server is already running")

        app = self.app or self.create_app()
        self._ssl_context = self._load_ssl_context()

        # Pipeline events replace the access log
        runner = web.AppRunner(
            app, access_log=None, shutdown_timeout=self.config.shutdown_timeout
        )
        await runner.setup()
        site = web.TCPSite(
            runner,
            host=self.config.host,
            port=self.config.port,
            ssl_context=self._ssl_context,
        )
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise

        self._runner, self._site = runner, site
        logger.info(
            f"Listening on {self.url}",
            extra={
                "host": self.config.host,
                "port": self.config.port,
                "tls_enabled": self._ssl_context is not None,
            },
        )

    async def stop(self) -> None:
        """Stop accepting calls and wait for in-flight ones to finish."""
        if self._runner is None:
            return

        logger.info(
            "Draining in-flight calls",
            extra={"shutdown_timeout": self.config.shutdown_timeout},
        )
        # Cleanup stops the site and fires the application's on_cleanup hooks
        await self._runner.cleanup()
        self._runner = None
        self._site = None
        logger.info("Listener closed")
