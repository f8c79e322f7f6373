"""Legal Nexus backend: WhatsApp document ingestion and e-signing."""

__version__ = "1.0.0"
