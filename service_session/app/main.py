"""
Session service for the secure session package.

Hosts a ``SecureAuth`` inside the shared FastAPI service base: the key
rotation scheduler follows the app lifecycle, and a few routes expose the
session state and the rotation status. Applications add their own login
form and protected routes on ``service.app`` using ``service.sessions``.
"""

from typing import Dict, Optional

from fastapi import Depends, FastAPI, Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.metrics import MetricsCollector, get_metrics_collector
from .auth import SecureAuth
from .middleware import SessionDependencies, install_session_handlers


class SessionService(BaseService):
    """Session service implementation."""

    def __init__(self, auth: Optional[SecureAuth] = None, config: Optional[ServiceConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        config = config or get_config("session", 8020)
        metrics = metrics or get_metrics_collector("session")
        super().__init__("session", config.port, config=config, metrics=metrics)
        self.auth = auth or SecureAuth.from_settings(self.config, metrics=self.metrics)
        self.sessions = SessionDependencies(self.auth)
        install_session_handlers(self.app)

        @self.app.on_event("startup")
        async def _startup():
            await self.auth.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.auth.stop()

        self._setup_session_routes()

    def _setup_session_routes(self):
        """Set up session-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "session",
                "message": "Secure session service",
                "version": "1.0.0"
            }

        @self.app.get("/session/status")
        async def session_status(payload=Depends(self.sessions.optional)):
            """Whether the caller holds a valid session."""
            return {"authenticated": payload is not None}

        @self.app.get("/session/keys")
        async def key_status():
            """Key rotation status (never includes key material)."""
            if self.auth.scheduler:
                return self.auth.scheduler.status()
            config = self.auth.config
            return {
                "running": False,
                "synced": self.auth.store.synced,
                "cookie_generations": len(config.cookie_keys.key_pairs),
                "cookie_rotated_at": config.cookie_keys.rotated_at.isoformat(),
                "form_token_generations": len(config.form_token_keys.key_pairs),
                "form_token_rotated_at": config.form_token_keys.rotated_at.isoformat(),
            }

        @self.app.post("/session/logout")
        async def logout(request: Request):
            """Delete the session cookie and redirect to the logout path."""
            carrier = self.auth.carrier(request)
            self.auth.logout(carrier)
            return carrier.to_response()

    async def _check_dependencies(self) -> Dict[str, str]:
        scheduler = self.auth.scheduler
        if scheduler is None:
            return {"config_db": "not_configured"}
        if scheduler.last_error is not None:
            return {"config_db": scheduler.last_error.code.lower()}
        return {"config_db": "ok" if self.auth.store.synced else "pending"}


def create_app(auth: Optional[SecureAuth] = None, config: Optional[ServiceConfig] = None,
               metrics: Optional[MetricsCollector] = None) -> FastAPI:
    """Create the session service app."""
    return SessionService(auth, config, metrics).app


if __name__ == "__main__":
    SessionService().run()
