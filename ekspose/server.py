from abc import abstractmethod

import uvicorn
from fastapi import FastAPI
from loguru import logger

from ekspose.config import ServerConfig


class WebServer:
    """Web server base for the admission webhook using FastAPI."""

    def __init__(self, config: ServerConfig):
        self.config = config
        self.app = FastAPI(debug=config.debug)
        self._setup_routes()

    @abstractmethod
    def _setup_routes(self):
        """
        Setup web routes.
        Example:
        self.app.add_api_route('/route', self.handle_route, methods=["GET"])
        """
        raise NotImplementedError()

    def uvicorn_kwargs(self) -> dict:
        """Build kwargs for uvicorn.run from the server configuration."""
        kwargs = {}

        if self.config.uds_path:
            logger.info(f"Starting webhook server on Unix socket {self.config.uds_path}")
            kwargs["uds"] = self.config.uds_path
        else:
            logger.info(f"Starting webhook server on {self.config.bind_address}:{self.config.port}")
            kwargs["host"] = self.config.bind_address
            kwargs["port"] = self.config.port
            # Apply TLS if configured for TCP
            if self.config.tls_cert_path and self.config.tls_key_path:
                kwargs["ssl_certfile"] = str(self.config.tls_cert_path)
                kwargs["ssl_keyfile"] = str(self.config.tls_key_path)
                logger.info("TLS enabled")
            else:
                logger.warning("TLS certificates not configured, running in insecure mode")

        return kwargs

    def run(self):
        """Run the webhook server until interrupted."""
        uvicorn.run(
            self.app,
            log_level="debug" if self.config.debug else "info",
            **self.uvicorn_kwargs(),
        )
