"""
Zoning label translation via Gemini generateContent

Translation is optional and best effort: any failure yields None and
the caller keeps the untranslated label.
"""

import json
import re
from typing import Any, Dict, Optional

from loguru import logger

from .config import get_config
from .connectors.base import http_scope
from .http_client import HttpClient
from .models import ZoningTranslation
from .schemas import parse_payload

LANGUAGE_NAMES = {
    "pt": "Portuguese",
    "es": "Spanish",
    "de": "German",
    "en": "English",
}

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def _language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code.lower(), code.upper())


def build_prompt(label: str, source_lang: str, target_lang: str, municipality: Optional[str] = None) -> str:
    src, tgt = _language_name(source_lang), _language_name(target_lang)
    muni = f"Municipality: {municipality}." if municipality else ""
    return (
        f"Translate the following {src} zoning/land-use label to concise {tgt} suitable for end-users. "
        f"Keep it short and domain-accurate. If it's already in {tgt}, keep as-is.\n"
        f"{muni}\n\n"
        f"Return JSON with: label_en (string for the {tgt} translation), confidence (0-1), notes (short optional).\n\n"
        f'Label: "{label}"'
    )


def parse_translation(text: str, label: str) -> Optional[ZoningTranslation]:
    """Model output as JSON, or the first {...} block inside it"""
    try:
        data = json.loads(text)
    except ValueError:
        match = _JSON_BLOCK.search(text)
        if not match:
            return None
        data = json.loads(match.group(0))

    if not isinstance(data, dict):
        return None
    confidence = data.get("confidence")
    notes = data.get("notes")
    return ZoningTranslation(
        label_en=str(data.get("label_en") or "").strip() or label,
        confidence=confidence if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) else None,
        notes=notes if isinstance(notes, str) else None,
    )


def translate_zoning_label(
    label: str,
    source_lang: str = "pt",
    target_lang: str = "en",
    municipality: Optional[str] = None,
    http: Optional[HttpClient] = None,
) -> Optional[ZoningTranslation]:
    """
    Translate one zoning label.

    Returns None on any failure, including a missing GOOGLE_API_KEY.
    """
    cfg = get_config()
    if not cfg.translation.api_key:
        logger.warning("Translation skipped: GOOGLE_API_KEY not set")
        return None

    url = f"{cfg.api.gemini_url.rstrip('/')}/{cfg.translation.model}:generateContent"
    body = {
        "contents": [{"role": "user", "parts": [{"text": build_prompt(label, source_lang, target_lang, municipality)}]}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "temperature": cfg.translation.temperature,
        },
    }

    try:
        with http_scope(http) as client:
            payload = client.post_json(
                url,
                body,
                headers={"x-goog-api-key": cfg.translation.api_key},
                timeout=cfg.translation.timeout,
            )
        text = parse_payload("gemini", payload).text()
        return parse_translation(text, label)
    except Exception as e:
        logger.warning(f"Translation failed for {label!r}: {e}")
        return None


def original_label(zoning: Dict[str, Any]) -> Optional[str]:
    """The untranslated label a translation should start from"""
    crus = zoning.get("crus")
    if isinstance(crus, dict) and crus.get("designation"):
        return crus.get("designation_original") if crus.get("translated") else crus["designation"]
    if zoning.get("translated"):
        return zoning.get("label_original")
    return zoning.get("label")


def apply_translation(zoning: Dict[str, Any], translation: ZoningTranslation) -> Dict[str, Any]:
    """
    Return a copy of `zoning` carrying the translated label.

    label_original (and crus.designation_original) always hold the first,
    untranslated value; applying a second translation only replaces the
    working label and the confidence/notes.
    """
    result = dict(zoning)
    already = bool(zoning.get("translated"))

    result["label_original"] = zoning.get("label_original") if already else zoning.get("label")
    result["label"] = translation.label_en
    result["translated"] = True
    result["translation_confidence"] = translation.confidence
    result["translation_notes"] = translation.notes

    crus = zoning.get("crus")
    if isinstance(crus, dict) and crus.get("designation"):
        crus = dict(crus)
        if not crus.get("translated"):
            crus["designation_original"] = crus["designation"]
        crus["designation"] = translation.label_en
        crus["translated"] = True
        crus["translation_confidence"] = translation.confidence
        crus["translation_notes"] = translation.notes
        result["crus"] = crus

    return result


def translate_zoning(
    zoning: Dict[str, Any],
    source_lang: str,
    target_lang: str = "en",
    municipality: Optional[str] = None,
    http: Optional[HttpClient] = None,
) -> Dict[str, Any]:
    """Translate a zoning result; on failure it comes back unchanged"""
    label = original_label(zoning)
    if not label:
        return zoning
    translation = translate_zoning_label(label, source_lang, target_lang, municipality, http=http)
    if translation is None:
        return zoning
    return apply_translation(zoning, translation)
