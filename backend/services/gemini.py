import os
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

# Direct REST calls to the Gemini API with API key authentication.
# Set GEMINI_API_KEY (or GOOGLE_API_KEY) in the environment.

BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_TIMEOUT_S = float(os.getenv("GEMINI_TIMEOUT_S", "60"))

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]

CONTENT_REJECTION_FINISH_REASONS = {
    "SAFETY",
    "IMAGE_SAFETY",
    "PROHIBITED_CONTENT",
    "BLOCKLIST",
    "SPII",
    "CONTENT_FILTER",
}
CONTENT_REJECTION_KEYWORDS = [
    "safety",
    "content policy",
    "blocked due to",
    "prohibited content",
    "sexually explicit",
    "harmful",
]
# Errors about the key or project, never about the prompt.
CREDENTIAL_ERROR_STATUSES = {"PERMISSION_DENIED", "UNAUTHENTICATED"}

BLOCKED_MESSAGE = "AI response was blocked due to safety settings. Please rephrase your message."
EMPTY_MESSAGE = "AI did not return a text response."
EMPTY_IMAGE_MESSAGE = (
    "Failed to generate outfit image. The model may have refused due to safety settings or other issues."
)


class GeminiError(Exception):
    """Base class for failures surfaced from a Gemini call."""


class ContentBlockedError(GeminiError):
    """The model declined to answer for content-policy reasons."""

    def __init__(self, message: str = BLOCKED_MESSAGE, *, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class EmptyResponseError(GeminiError):
    """The model answered but gave no usable text or image."""

    def __init__(self, message: str = EMPTY_MESSAGE, *, finish_reason: Optional[str] = None):
        super().__init__(message)
        self.finish_reason = finish_reason


class GeminiAPIError(GeminiError):
    """Non-2xx HTTP response that is not a content rejection."""

    def __init__(self, status_code: int, body: str, *, credential_error: bool = False):
        super().__init__(f"Gemini API error: {status_code} - {body[:300]}")
        self.status_code = status_code
        self.body = body
        self.credential_error = credential_error


def get_api_key() -> Optional[str]:
    return os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")


def is_content_rejection(
    *,
    finish_reason: Optional[str] = None,
    http_status: Optional[int] = None,
    error_text: Optional[str] = None,
) -> bool:
    """
    Returns True if the failure looks like a content/safety rejection, as opposed
    to an empty answer, a transport error or an unrelated API error.
    """
    fr = (finish_reason or "").strip().upper()
    if fr in CONTENT_REJECTION_FINISH_REASONS:
        return True

    # Some Gemini errors come back as 400/403 with policy text in the body.
    if http_status in (400, 403, 422):
        if is_credential_error(error_text):
            return False
        text = (error_text or "").lower()
        return any(k in text for k in CONTENT_REJECTION_KEYWORDS)

    return False


def is_credential_error(error_text: Optional[str]) -> bool:
    """
    True when a Google API error body is about the key or project
    (PERMISSION_DENIED, UNAUTHENTICATED, API_KEY_* reasons).
    """
    try:
        body = json.loads(error_text or "")
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return False

    if str(error.get("status") or "").upper() in CREDENTIAL_ERROR_STATUSES:
        return True
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and str(detail.get("reason") or "").upper().startswith("API_KEY_"):
            return True
    return False


async def _gemini_post_json(
    client: httpx.AsyncClient,
    *,
    url: str,
    headers: Dict[str, str],
    payload: Dict[str, Any],
) -> httpx.Response:
    """
    Thin wrapper for Gemini HTTP calls so tests can monkeypatch the network.
    """
    return await client.post(url, headers=headers, json=payload)


async def generate_content(
    contents: List[Dict[str, Any]],
    *,
    model: str,
    system_instruction: Optional[Dict[str, Any]] = None,
    generation_config: Optional[Dict[str, Any]] = None,
    safety_settings: Optional[List[Dict[str, str]]] = None,
    api_key: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Calls Gemini generateContent and returns the decoded JSON body.

    Args:
        contents: Role-tagged Gemini contents (see services.prompts).
        model: Model name, e.g. "gemini-2.0-flash".
        system_instruction: Optional systemInstruction object.
        generation_config: Sampling config (temperature, responseModalities, ...).
        safety_settings: Defaults to SAFETY_SETTINGS.
        api_key: Overrides the key read from the environment.
        client: Reuse an existing AsyncClient (the caller owns its lifetime).
        timeout: Seconds, only used when this call creates its own client.

    Returns:
        dict: the raw response payload, to be unwrapped with extract_text / extract_image.

    Raises:
        ValueError: no API key configured.
        ContentBlockedError: the request itself was rejected on policy grounds.
        GeminiAPIError: any other non-2xx response.
        httpx.HTTPError: transport failures propagate unchanged.
    """
    api_key = api_key or get_api_key()
    if not api_key:
        raise ValueError("GEMINI_API_KEY or GOOGLE_API_KEY environment variable is required")

    payload: Dict[str, Any] = {
        "contents": contents,
        "safetySettings": safety_settings if safety_settings is not None else SAFETY_SETTINGS,
    }
    if system_instruction:
        payload["systemInstruction"] = system_instruction
    if generation_config:
        payload["generationConfig"] = generation_config

    url = f"{BASE_URL}/{model}:generateContent?key={api_key}"
    headers = {"Content-Type": "application/json"}

    logger.info(f"Calling Gemini model {model} with {len(contents)} content turn(s)")
    if client is None:
        async with httpx.AsyncClient(timeout=timeout or DEFAULT_TIMEOUT_S) as own_client:
            response = await _gemini_post_json(own_client, url=url, headers=headers, payload=payload)
    else:
        response = await _gemini_post_json(client, url=url, headers=headers, payload=payload)

    if not response.is_success:
        error_text = response.text
        logger.error(f"Gemini API error from {model}: {response.status_code} - {error_text[:500]}")
        if is_content_rejection(http_status=response.status_code, error_text=error_text):
            raise ContentBlockedError(reason=f"http_{response.status_code}")
        raise GeminiAPIError(
            response.status_code,
            error_text,
            credential_error=response.status_code in (401, 403) or is_credential_error(error_text),
        )

    return response.json()


def _first_candidate(data: Dict[str, Any]) -> Dict[str, Any]:
    candidates = (data or {}).get("candidates") or []
    return (candidates[0] or {}) if candidates else {}


def _candidate_parts(candidate: Dict[str, Any]) -> List[Dict[str, Any]]:
    content = candidate.get("content") or {}
    return [p for p in (content.get("parts") or []) if isinstance(p, dict)]


def _candidate_text(candidate: Dict[str, Any]) -> str:
    return "".join(str(p.get("text") or "") for p in _candidate_parts(candidate) if "text" in p)


def _raise_for_missing_output(
    data: Dict[str, Any],
    *,
    model_text: str = "",
    empty_message: str = EMPTY_MESSAGE,
) -> None:
    """Classifies an answer without usable output and raises the matching error."""
    prompt_feedback = (data or {}).get("promptFeedback") or {}
    block_reason = prompt_feedback.get("blockReason")
    if block_reason:
        logger.warning(f"Gemini prompt blocked: {block_reason}")
        raise ContentBlockedError(reason=block_reason)

    candidate = _first_candidate(data)
    finish_reason = candidate.get("finishReason") or candidate.get("finish_reason")
    if is_content_rejection(finish_reason=finish_reason):
        logger.warning(f"Gemini candidate blocked, finish reason: {finish_reason}")
        raise ContentBlockedError(model_text or BLOCKED_MESSAGE, reason=finish_reason)

    logger.warning(f"Gemini returned no usable output. Response: {json.dumps(data)[:500]}")
    raise EmptyResponseError(model_text or empty_message, finish_reason=finish_reason)


def extract_text(data: Dict[str, Any]) -> str:
    """
    Returns the first candidate's text unchanged.

    Raises:
        ContentBlockedError: no text and the prompt or candidate was blocked.
        EmptyResponseError: no text and no decline signal.
    """
    text = _candidate_text(_first_candidate(data))
    if text:
        return text
    _raise_for_missing_output(data)
    return ""  # unreachable


def extract_image(data: Dict[str, Any]) -> str:
    """
    Returns the first inline image of the first candidate as a data URI.

    When no image is present the error message is the model's own text, if any,
    so the caller can show why the image was withheld.
    """
    candidate = _first_candidate(data)
    for part in _candidate_parts(candidate):
        inline_data = part.get("inline_data") or part.get("inlineData")
        if inline_data and inline_data.get("data"):
            mime_type = inline_data.get("mime_type") or inline_data.get("mimeType") or "image/png"
            return f"data:{mime_type};base64,{inline_data['data']}"

    model_text = _candidate_text(candidate).strip()
    if model_text:
        logger.error(f"Image generation failed. Text response from image model: {model_text[:200]}")
    _raise_for_missing_output(data, model_text=model_text, empty_message=EMPTY_IMAGE_MESSAGE)
    return ""  # unreachable
