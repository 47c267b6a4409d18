from fastapi import FastAPI, UploadFile, File, HTTPException, Form, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Optional
import uvicorn
import os
import base64
import binascii
import sys
import uuid
import time
import logging
from pathlib import Path
from dotenv import load_dotenv

# Add current directory to path to find services module
sys.path.insert(0, str(Path(__file__).parent))

from services import chat, curate, gemini
from services.image_normalize import normalize_to_data_uri, parse_data_uri
from services.prompts import INITIAL_AI_GREETING
from services.schemas import ChatRequest, ChatResponse, CurationRequest, CurationResult

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="AestheFit API")

# Configure CORS
# Format: comma-separated list, e.g., "https://app.example.com,https://www.example.com"
allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "")
if allowed_origins_str:
    allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]
else:
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:9002",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-Id"],
)

# Upload limits
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 5 * 1024 * 1024))  # 5MB default
MAX_TOTAL_SIZE = int(os.getenv("MAX_TOTAL_SIZE", 50 * 1024 * 1024))  # 50MB default
MAX_CLOTHING_ITEMS = int(os.getenv("MAX_CLOTHING_ITEMS", 10))
MODEL_IMAGE_MAX_BYTES = int(os.getenv("MODEL_IMAGE_MAX_BYTES", 1_500_000))
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

# Peers allowed to set X-Forwarded-For / X-Real-IP, e.g. "10.0.0.5,127.0.0.1"
TRUSTED_PROXY_IPS = {ip.strip() for ip in os.getenv("TRUSTED_PROXY_IPS", "").split(",") if ip.strip()}

CONTENT_BLOCKED_DETAIL = (
    "The request was blocked by safety filters. Please rephrase your message or use different images."
)
MISSING_KEY_DETAIL = "Gemini API key not configured. Set GEMINI_API_KEY (or GOOGLE_API_KEY) environment variable."
CREDENTIAL_ERROR_DETAIL = "Gemini API key was rejected. Check the key and the project it belongs to."

_rate_buckets: dict[str, tuple[int, float]] = {}


def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Simple best-effort in-memory rate limiter (per-instance).
    Returns True if allowed, False if rate-limited.
    """
    now = time.time()
    count, expires_at = _rate_buckets.get(key, (0, 0.0))
    if expires_at <= now:
        _rate_buckets[key] = (1, now + window_seconds)
        return True
    if count >= limit:
        return False
    _rate_buckets[key] = (count + 1, expires_at)
    return True


def get_client_ip(request: Request) -> str:
    """
    Client address for rate limiting. X-Forwarded-For / X-Real-IP are only read
    when the direct peer is listed in TRUSTED_PROXY_IPS.
    """
    peer = request.client.host if request.client else "unknown"
    if peer not in TRUSTED_PROXY_IPS:
        return peer

    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or peer
    return request.headers.get("x-real-ip") or peer


def enforce_rate_limit(request: Request, endpoint: str, limit: int, window_seconds: int = 60) -> None:
    ip = get_client_ip(request)
    if not check_rate_limit(f"{endpoint}:{ip}", limit=limit, window_seconds=window_seconds):
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again shortly.")


def validate_image_file(file: UploadFile) -> tuple[bool, str]:
    """Validate that uploaded file is a valid image"""
    if not file.content_type or file.content_type.lower() not in ALLOWED_IMAGE_TYPES:
        return False, f"Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}"

    if not file.filename:
        return False, "Filename is required"

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        return False, f"Invalid file extension. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    return True, ""


async def prepare_model_image(img_bytes: bytes, label: str) -> str:
    """Enforces the per-file limit and normalizes the image into a data URI for the model."""
    if len(img_bytes) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"{label} too large. Maximum size: {MAX_FILE_SIZE / (1024*1024):.1f}MB"
        )
    try:
        # Pillow work is CPU bound; keep it off the event loop.
        return await run_in_threadpool(normalize_to_data_uri, img_bytes, max_bytes=MODEL_IMAGE_MAX_BYTES)
    except Exception as e:
        logger.warning(f"Could not decode {label.lower()}: {e}")
        raise HTTPException(status_code=400, detail=f"{label} could not be read as an image")


async def read_upload_as_data_uri(file: UploadFile, label: str) -> tuple[str, int]:
    """Validates an upload and returns (normalized data URI, original size in bytes)."""
    is_valid, error_msg = validate_image_file(file)
    if not is_valid:
        raise HTTPException(status_code=400, detail=f"{label} validation failed: {error_msg}")

    img_bytes = await file.read()
    return await prepare_model_image(img_bytes, label), len(img_bytes)


async def read_data_uri_image(data_uri: str, label: str) -> tuple[str, int]:
    """Same checks as read_upload_as_data_uri for an image sent inline as a data URI."""
    try:
        mime_type, data = parse_data_uri(data_uri)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"{label} validation failed: {e}")
    if mime_type.lower() not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"{label} validation failed: Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}"
        )
    try:
        img_bytes = base64.b64decode(data, validate=True)
    except binascii.Error:
        raise HTTPException(status_code=400, detail=f"{label} validation failed: invalid base64 data")
    return await prepare_model_image(img_bytes, label), len(img_bytes)


def check_total_size(total_size: int) -> None:
    if total_size > MAX_TOTAL_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"Total upload size too large. Maximum: {MAX_TOTAL_SIZE / (1024*1024):.1f}MB"
        )


def raise_for_flow_error(e: Exception, endpoint: str) -> None:
    """Maps a flow failure to the HTTP error shown by the UI."""
    error_type = type(e).__name__
    logger.error(f"Error in {endpoint} endpoint: {error_type}: {e}", exc_info=True)

    if isinstance(e, gemini.ContentBlockedError):
        raise HTTPException(status_code=422, detail=str(e) or CONTENT_BLOCKED_DETAIL)
    if isinstance(e, gemini.EmptyResponseError):
        raise HTTPException(status_code=502, detail=str(e))
    if isinstance(e, gemini.GeminiAPIError) and e.credential_error:
        raise HTTPException(status_code=500, detail=CREDENTIAL_ERROR_DETAIL)
    if isinstance(e, gemini.GeminiAPIError):
        raise HTTPException(status_code=502, detail=f"Upstream model error ({e.status_code}). Please try again.")
    if isinstance(e, ValueError) and ("GEMINI_API_KEY" in str(e) or "GOOGLE_API_KEY" in str(e)):
        raise HTTPException(status_code=500, detail=MISSING_KEY_DETAIL)
    if isinstance(e, ValueError):
        raise HTTPException(status_code=400, detail=str(e))
    raise HTTPException(status_code=500, detail=str(e))


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    return response


@app.get("/")
async def root():
    return {"message": "AestheFit API is running"}


@app.get("/api/chat/greeting")
async def chat_greeting():
    return {"greeting": INITIAL_AI_GREETING}


@app.post("/api/chat", response_model=ChatResponse)
async def chat_endpoint(request: Request, payload: ChatRequest):
    """
    AestheFit Assistant chat. The UI sends the full visible conversation as
    history; the reply is not stored server-side.
    """
    enforce_rate_limit(request, "chat", limit=30)
    logger.info(f"Chat request received with {len(payload.history)} history turn(s)")
    try:
        return await chat.chat_with_bot(payload.user_input, payload.history)
    except HTTPException:
        raise
    except Exception as e:
        raise_for_flow_error(e, "chat")


async def _run_curation(curation_request: CurationRequest) -> CurationResult:
    try:
        result = await curate.curate_outfit(curation_request)
    except HTTPException:
        raise
    except Exception as e:
        raise_for_flow_error(e, "curate-outfit")
    logger.info(
        f"Curation completed. Suggestion: {len(result.outfit_suggestion)} chars, "
        f"image: {'yes' if result.generated_outfit_image_uri else 'no'}"
    )
    return result


@app.post("/api/curate-outfit", response_model=CurationResult)
async def curate_outfit_endpoint(
    request: Request,
    occasion: str = Form(...),
    clothing_images: List[UploadFile] = File(...),
    person_image: Optional[UploadFile] = File(None),
):
    """
    Outfit curation from uploaded wardrobe photos. Returns a textual outfit
    suggestion and a generated image of the outfit on a mannequin.
    """
    enforce_rate_limit(request, "curate-outfit", limit=10)

    if not occasion.strip():
        raise HTTPException(status_code=422, detail="Please specify an occasion for the outfit.")
    if len(clothing_images) > MAX_CLOTHING_ITEMS:
        raise HTTPException(status_code=400, detail=f"Maximum {MAX_CLOTHING_ITEMS} clothing items allowed")

    total_size = 0
    clothing_items = []
    for img in clothing_images:
        data_uri, size = await read_upload_as_data_uri(img, "Clothing image")
        total_size += size
        clothing_items.append(data_uri)

    person_image_data_uri = None
    if person_image is not None and person_image.filename:
        person_image_data_uri, size = await read_upload_as_data_uri(person_image, "Person image")
        total_size += size

    check_total_size(total_size)

    logger.info(f"Curate-outfit request received for '{occasion.strip()}' with {len(clothing_items)} item(s)")
    curation_request = CurationRequest(
        occasion=occasion,
        clothing_items=clothing_items,
        person_image_data_uri=person_image_data_uri,
    )
    return await _run_curation(curation_request)


@app.post("/api/curate-outfit/data-uris", response_model=CurationResult)
async def curate_outfit_from_data_uris(request: Request, payload: CurationRequest):
    """
    Same as /api/curate-outfit for clients that already hold wardrobe images as
    data URIs (the browser keeps them that way in local storage).
    """
    enforce_rate_limit(request, "curate-outfit", limit=10)
    if len(payload.clothing_items) > MAX_CLOTHING_ITEMS:
        raise HTTPException(status_code=400, detail=f"Maximum {MAX_CLOTHING_ITEMS} clothing items allowed")

    total_size = 0
    clothing_items = []
    for uri in payload.clothing_items:
        data_uri, size = await read_data_uri_image(uri, "Clothing image")
        total_size += size
        clothing_items.append(data_uri)

    person_image_data_uri = None
    if payload.person_image_data_uri:
        person_image_data_uri, size = await read_data_uri_image(payload.person_image_data_uri, "Person image")
        total_size += size

    check_total_size(total_size)

    logger.info(
        f"Curate-outfit (data URI) request received for '{payload.occasion}' "
        f"with {len(clothing_items)} item(s)"
    )
    curation_request = CurationRequest(
        occasion=payload.occasion,
        clothing_items=clothing_items,
        person_image_data_uri=person_image_data_uri,
    )
    return await _run_curation(curation_request)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=True,
        timeout_keep_alive=600,  # image generation can take minutes
    )
