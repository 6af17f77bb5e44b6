"""
Document Scan Service — Google Gemini identity document extraction and
selfie face matching.
Handles document scanning, field extraction, and face-match scoring.
"""
import json
from typing import Dict, Optional

import google.generativeai as genai
from pydantic import BaseModel

from app.config import get_settings
from app.utils.exceptions import ConfigurationError, DocumentScanError
from app.utils.logging import get_logger

settings = get_settings()
LOGGER = get_logger(__name__)

# Configure Gemini at module level
_model = None


def get_ocr_model():
    """Lazily initialize the Gemini model."""
    global _model
    if _model is None and settings.GEMINI_API_KEY:
        genai.configure(api_key=settings.GEMINI_API_KEY)
        _model = genai.GenerativeModel(
            model_name=settings.GEMINI_MODEL,
            generation_config={
                "temperature": 0,
                "top_p": 1,
                "top_k": 32,
                "max_output_tokens": 1024,
            },
        )
    return _model


# Deterministic extraction prompt
SCAN_PROMPT = """You are a deterministic identity-document extractor and face comparator.
You receive two images: (1) an identity document (ID card, passport, or company
registration certificate), (2) a selfie of the person presenting it (may be absent
for company certificates).

STRICT RULES:
1. Extract text EXACTLY as written on the document.
2. If a field is not clearly visible, return null for that field.
3. DO NOT guess, infer, or hallucinate any data.
4. Return ONLY raw JSON — no markdown, no explanation.

REQUIRED FIELDS:
- full_name (string): Full name or company name as printed
- date_of_birth (string): Date of birth in YYYY-MM-DD format
- national_id (string): Personal identity number
- registration_number (string): Company registration number
- registration_date (string): Company registration date in YYYY-MM-DD format
- tin (string): Tax identification number
- document_type (string): ID/Passport/Registration
- face_match_score (number): 0.0-1.0 likelihood the selfie shows the document holder, null if no selfie
- confidence (integer): Your confidence 0-100 that extraction is accurate

Return ONLY the JSON object."""

_FIELD_KEYS = ("full_name", "date_of_birth", "national_id", "registration_number", "registration_date", "tin")


class ScanResult(BaseModel):
    extracted_fields: Dict[str, str]
    face_match_score: float = 0.0
    confidence: int = 0
    source: str = "Gemini"


class OCRService:
    """AI-powered identity document scanning service."""

    def scan(
        self,
        document: bytes,
        document_type: str,
        selfie: Optional[bytes] = None,
        selfie_type: Optional[str] = None,
    ) -> ScanResult:
        """Scan a document image (and optional selfie) and extract identity fields.

        Args:
            document: Raw bytes of the identity document image.
            document_type: MIME type of the document image.
            selfie: Raw bytes of the live selfie, if captured.
            selfie_type: MIME type of the selfie.

        Returns:
            ScanResult with extracted fields and face-match score.

        Raises:
            DocumentScanError: If AI fails or returns invalid data.
        """
        model = get_ocr_model()
        if not model:
            raise ConfigurationError(
                "Document scanning is not available: GEMINI_API_KEY is not configured."
            )

        contents = [SCAN_PROMPT, {"mime_type": document_type, "data": document}]
        if selfie:
            contents.append({"mime_type": selfie_type or "image/jpeg", "data": selfie})

        try:
            response = model.generate_content(contents=contents)
        except Exception as e:
            LOGGER.error("Gemini API call failed: %s", e)
            raise DocumentScanError("AI processing failed. Please try again.") from e

        try:
            raw_text = response.text
        except ValueError as e:
            LOGGER.warning("response.text failed. Candidates: %s", response.candidates)
            raise DocumentScanError(
                "AI failed to read the document. "
                "The image might be too blurry or contain blocked content."
            ) from e

        if not raw_text or not raw_text.strip():
            raise DocumentScanError("AI returned an empty response.")

        extracted = parse_scan_response(raw_text)

        score = extracted.get("face_match_score")
        confidence = extracted.get("confidence", 0)
        if not isinstance(confidence, int):
            confidence = 0

        fields = {
            key: str(extracted[key]).strip()
            for key in _FIELD_KEYS
            if extracted.get(key) not in (None, "")
        }
        return ScanResult(
            extracted_fields=fields,
            face_match_score=float(score) if isinstance(score, (int, float)) else 0.0,
            confidence=confidence,
            source=f"{settings.GEMINI_MODEL}",
        )


def parse_scan_response(raw_text: str) -> dict:
    """Parse the JSON object out of a model response, tolerating code fences."""
    cleaned = raw_text.strip()
    if "```json" in cleaned:
        cleaned = cleaned.split("```json")[1].split("```")[0].strip()
    elif "```" in cleaned:
        cleaned = cleaned.split("```")[1].split("```")[0].strip()

    try:
        extracted = json.loads(cleaned)
    except json.JSONDecodeError as e:
        LOGGER.warning("Scan JSON parse failed")
        raise DocumentScanError("AI returned invalid format. Please try a clearer photo.") from e
    if not isinstance(extracted, dict):
        raise DocumentScanError("AI returned invalid format. Please try a clearer photo.")
    return extracted
