"""
Configuration module - loads secrets from Google Secret Manager.
Falls back to environment variables for local development.
"""
import json
import os
import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field, model_validator, field_validator
from typing import List, Any

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """A required setting is missing or invalid."""


def get_secret_from_gcp(secret_id: str, project_id: Optional[str] = None) -> Optional[str]:
    """
    Fetch secret from Google Secret Manager.
    Returns None if not available (fallback to env vars).
    """
    try:
        from google.cloud import secretmanager

        project = project_id or os.environ.get("GCP_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT")
        if not project:
            return None

        client = secretmanager.SecretManagerServiceClient()
        name = f"projects/{project}/secrets/{secret_id}/versions/latest"
        response = client.access_secret_version(request={"name": name})
        return response.payload.data.decode("UTF-8")
    except Exception as e:
        logger.debug(f"Could not fetch secret {secret_id} from Secret Manager: {e}")
        return None


class Settings(BaseSettings):
    """Application settings with Secret Manager integration."""

    # GCP
    gcp_project_id: str = Field(default="", alias="GCP_PROJECT_ID")

    # Supabase (service role - this backend is the only writer for the pipeline tables)
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_service_role_key: str = Field(default="", alias="SUPABASE_SERVICE_ROLE_KEY")

    # GCS
    gcs_bucket: str = Field(default="", alias="GCS_BUCKET")
    gcs_signed_url_expiration_minutes: int = Field(default=10, alias="GCS_SIGNED_URL_EXPIRATION_MINUTES")
    document_url_expiration_minutes: int = Field(
        default=60,
        alias="DOCUMENT_URL_EXPIRATION_MINUTES",
        description="Lifetime of the document URL handed to an external signer",
    )

    # Green API (WhatsApp)
    green_api_url: str = Field(default="https://api.green-api.com", alias="GREEN_API_URL")
    green_api_instance_id: str = Field(default="", alias="GREEN_API_INSTANCE_ID")
    green_api_token: str = Field(default="", alias="GREEN_API_TOKEN")
    webhook_secret: str = Field(default="", alias="WEBHOOK_SECRET")
    default_country_code: str = Field(default="972", alias="DEFAULT_COUNTRY_CODE")
    pending_selection_ttl_minutes: int = Field(default=30, alias="PENDING_SELECTION_TTL_MINUTES")

    # Extraction model
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    extraction_model: str = Field(default="gemini-1.5-pro", alias="EXTRACTION_MODEL")
    extraction_max_output_tokens: int = Field(default=4096, alias="EXTRACTION_MAX_OUTPUT_TOKENS")

    # Signing
    signing_default_expiry_days: int = Field(default=30, alias="SIGNING_DEFAULT_EXPIRY_DAYS")

    # App
    app_url: str = Field(default="http://localhost:5173", alias="APP_URL")
    admin_api_secret: str = Field(default="", alias="ADMIN_API_SECRET")

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # CORS
    allowed_origins: List[str] = Field(default=[], alias="ALLOWED_ORIGINS")

    @field_validator("allowed_origins", mode='before')
    @classmethod
    def _parse_allowed_origins(cls, v: Any) -> List[str]:
        """Parse ALLOWED_ORIGINS from JSON list, CSV, semicolon-separated string, or list."""
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    return json.loads(s)
                except json.JSONDecodeError:
                    pass
            parts = [p.strip() for p in s.replace(",", ";").split(";")]
            return [p for p in parts if p]
        return []

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._load_secrets_from_gcp()

    def _load_secrets_from_gcp(self):
        """Override settings with values from Secret Manager if available."""
        secret_mappings = {
            "supabase_url": "SUPABASE_URL",
            "supabase_service_role_key": "SUPABASE_SERVICE_ROLE_KEY",
            "gcs_bucket": "GCS_BUCKET",
            "green_api_instance_id": "GREEN_API_INSTANCE_ID",
            "green_api_token": "GREEN_API_TOKEN",
            "webhook_secret": "WEBHOOK_SECRET",
            "gemini_api_key": "GEMINI_API_KEY",
            "admin_api_secret": "ADMIN_API_SECRET",
        }

        if not (self.gcp_project_id or os.environ.get("GOOGLE_CLOUD_PROJECT")):
            return

        for attr, secret_id in secret_mappings.items():
            secret_value = get_secret_from_gcp(secret_id, self.gcp_project_id)
            if secret_value:
                setattr(self, attr, secret_value)
                logger.info(f"Loaded {secret_id} from Secret Manager")

    @model_validator(mode='after')
    def validate_urls(self) -> 'Settings':
        """Validate URL configuration for the environment."""
        if self.environment == "production":
            if not self.app_url.startswith("https://"):
                logger.error(
                    f"CRITICAL: APP_URL ('{self.app_url}') must use HTTPS in production! "
                    "Signing links sent over WhatsApp are built from it."
                )
            elif "localhost" in self.app_url:
                logger.error(f"CRITICAL: APP_URL ('{self.app_url}') contains localhost in production!")
        return self

    def require(self, attr: str) -> str:
        """
        Return a required setting or raise ConfigurationError.

        Used at first use of an external collaborator so that missing
        configuration fails loudly instead of degrading silently.
        """
        value = getattr(self, attr, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            env_name = type(self).model_fields[attr].alias or attr.upper()
            raise ConfigurationError(f"Missing required configuration: {env_name}")
        return value

    def get_app_url(self) -> str:
        """Public origin of the web application (no trailing slash)."""
        return self.app_url.rstrip("/")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# =============================================================================
# CORS Configuration
# =============================================================================

# Development origins (only in non-production)
DEV_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://localhost:8080",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]

# Signer-facing endpoints: recipients open them from a WhatsApp link
PUBLIC_PATH_PREFIXES = ("/v1/public/",)


def get_cors_origins(settings: Optional[Settings] = None) -> List[str]:
    """
    Get list of allowed CORS origins for authenticated/internal endpoints.

    Combines:
    1. The deployed application origin (APP_URL)
    2. Origins from ALLOWED_ORIGINS env variable
    3. Development origins (if not in production)
    """
    settings = settings or get_settings()
    origins = {settings.get_app_url()}

    if settings.allowed_origins:
        origins.update(o.rstrip("/") for o in settings.allowed_origins)

    if settings.environment != "production":
        origins.update(DEV_CORS_ORIGINS)

    return sorted(origins)


def is_public_path(path: str) -> bool:
    """Check if a request path belongs to the public (any-origin) surface."""
    return path.startswith(PUBLIC_PATH_PREFIXES)


def is_allowed_origin(origin: str, settings: Optional[Settings] = None) -> bool:
    """Check if an origin is allowed for the restricted CORS policy."""
    if not origin:
        return False
    return origin.rstrip("/") in get_cors_origins(settings)
