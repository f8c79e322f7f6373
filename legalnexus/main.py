"""
Legal Nexus Backend - Main FastAPI Application
WhatsApp document ingestion and document signing for law offices.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from legalnexus import __version__
from legalnexus.config import ConfigurationError, get_settings
from legalnexus.exceptions import (
    AppException,
    app_exception_handler,
    configuration_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from legalnexus.routers import documents, health, messaging, public_signing, signing_requests, webhook
from legalnexus.utils.cors import RoutedCORSMiddleware
from legalnexus.utils.logging import RequestIdMiddleware, get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    setup_logging(
        environment=settings.environment,
        level=logging.DEBUG if settings.debug else logging.INFO,
    )
    logger.info(f"Starting Legal Nexus Backend v{__version__} ({settings.environment})")
    yield
    logger.info("Shutting down Legal Nexus Backend")


app = FastAPI(
    title="Legal Nexus Backend",
    description="""Backend for WhatsApp document ingestion and document signing.

## Authentication

Org endpoints accept either:

### 1. Supabase access token (frontend calls)
`Authorization: Bearer <access_token>`

### 2. Admin Secret + User ID (server-to-server calls)
- `X-Admin-Secret`: Admin API secret
- `X-User-ID`: User's Supabase UUID

Both forms require `X-Company-ID`, and the user must belong to that company.

Public signing endpoints authenticate with the access token from the signing link.
The WhatsApp webhook authenticates with the `secret` query parameter.
""",
    version=__version__,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "whatsapp", "description": "Inbound WhatsApp webhook"},
        {"name": "documents", "description": "Document extraction"},
        {"name": "signing-requests", "description": "Signing request management (org)"},
        {"name": "signing", "description": "Document signing operations (public, token-based)"},
        {"name": "health", "description": "Health check endpoints"},
    ],
)

# Middleware
app.add_middleware(RequestIdMiddleware)
app.add_middleware(RoutedCORSMiddleware)

# Exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(ValidationError, validation_exception_handler)
app.add_exception_handler(ConfigurationError, configuration_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(health.router)
app.include_router(webhook.router)
app.include_router(messaging.router)
app.include_router(documents.router)
app.include_router(signing_requests.router)
app.include_router(public_signing.router)
