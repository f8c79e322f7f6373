"""
Legal document extraction through a Gemini vision model.

The model receives the raw document inline and answers with one JSON
object. A reply that does not parse is not an error: it becomes a
parse-error result that callers store as a low-confidence record.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import google.generativeai as genai
from pydantic import ValidationError

from legalnexus.config import get_settings, Settings
from legalnexus.exceptions import ExtractionError
from legalnexus.models import ExtractedFields, normalize_media_type
from legalnexus.prompts import SYSTEM_PROMPT, USER_PROMPT

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def parse_extraction_response(text: Optional[str]) -> Dict[str, Any]:
    """
    Parse the model reply into a dict.

    Strips a wrapping ``` or ```json fence first. Anything that is not a
    JSON object yields {"parse_error": True, "raw_response": text}.
    """
    raw = text or ""
    candidate = raw.strip()
    match = _FENCE.match(candidate)
    if match:
        candidate = match.group(1).strip()

    try:
        parsed = json.loads(candidate)
    except (ValueError, TypeError):
        return {"parse_error": True, "raw_response": raw}

    if not isinstance(parsed, dict):
        return {"parse_error": True, "raw_response": raw}
    return parsed


@dataclass
class ExtractionResult:
    fields: Optional[ExtractedFields]
    payload: Dict[str, Any]
    raw_response: str
    model: str
    usage: Dict[str, Any] = field(default_factory=dict)

    @property
    def parse_error(self) -> bool:
        return self.fields is None


def _usage_of(response: Any) -> Dict[str, Any]:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return {}
    return {
        "input_tokens": getattr(usage, "prompt_token_count", None),
        "output_tokens": getattr(usage, "candidates_token_count", None),
    }


class DocumentExtractor:
    """Sends a document to the extraction model and normalizes the reply."""

    def __init__(self, settings: Optional[Settings] = None, model: Optional[Any] = None):
        self.settings = settings or get_settings()
        self._model = model

    @property
    def model_name(self) -> str:
        return self.settings.extraction_model

    @property
    def model(self) -> genai.GenerativeModel:
        if self._model is None:
            genai.configure(api_key=self.settings.require("gemini_api_key"))
            self._model = genai.GenerativeModel(
                self.settings.extraction_model,
                system_instruction=SYSTEM_PROMPT,
            )
        return self._model

    async def extract(self, data: bytes, mime_type: str) -> ExtractionResult:
        """
        Run extraction over raw document bytes.

        Raises ExtractionError when the model cannot be reached or returns
        no text. Unparseable text is returned as a parse-error result.
        """
        if not data:
            raise ExtractionError("Empty document")

        media_type = normalize_media_type(mime_type)
        model = self.model
        try:
            response = await model.generate_content_async(
                [{"mime_type": media_type, "data": data}, USER_PROMPT],
                generation_config={
                    "max_output_tokens": self.settings.extraction_max_output_tokens,
                    "temperature": 0,
                },
            )
            text = response.text
        except Exception as e:
            # google.api_core errors, blocked responses (ValueError on .text), timeouts
            logger.error(f"extract: model call failed ({type(e).__name__}: {e})")
            raise ExtractionError(f"Extraction model call failed: {type(e).__name__}") from e

        usage = _usage_of(response)
        payload = parse_extraction_response(text)

        if payload.get("parse_error"):
            logger.warning(f"extract: unparseable model reply ({len(text or '')} chars)")
            return ExtractionResult(
                fields=None, payload=payload, raw_response=text or "", model=self.model_name, usage=usage,
            )

        try:
            fields = ExtractedFields.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"extract: reply JSON did not fit the expected shape: {e.error_count()} errors")
            payload = {"parse_error": True, "raw_response": text or ""}
            return ExtractionResult(
                fields=None, payload=payload, raw_response=text or "", model=self.model_name, usage=usage,
            )

        logger.info(
            f"extract: type={fields.document_type.value}, confidence={fields.confidence}, "
            f"parties={len(fields.parties)}"
        )
        return ExtractionResult(
            fields=fields, payload=payload, raw_response=text or "", model=self.model_name, usage=usage,
        )


# Singleton instance
_extractor: Optional[DocumentExtractor] = None


def get_document_extractor() -> DocumentExtractor:
    """Get the document extractor singleton."""
    global _extractor
    if _extractor is None:
        _extractor = DocumentExtractor()
    return _extractor
