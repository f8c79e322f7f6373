"""
Path-routed CORS.

Signer-facing endpoints are opened from a shared WhatsApp link, so they
accept any origin. Everything else is restricted to the deployed app.
"""
from typing import Optional

from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from legalnexus.config import Settings, get_cors_origins, is_public_path


class RoutedCORSMiddleware:
    """Dispatch each request to the public or the restricted CORS policy."""

    def __init__(self, app: ASGIApp, settings: Optional[Settings] = None) -> None:
        self.app = app
        self.public = CORSMiddleware(
            app,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )
        self.restricted = CORSMiddleware(
            app,
            allow_origins=get_cors_origins(settings),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if is_public_path(scope.get("path", "")):
            await self.public(scope, receive, send)
        else:
            await self.restricted(scope, receive, send)
