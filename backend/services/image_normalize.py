import io
import re
import base64
import logging
from typing import Optional, Tuple

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>[A-Za-z0-9+/=\s]+)$")


def to_data_uri(image_bytes: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('utf-8')}"


def parse_data_uri(data_uri: str) -> Tuple[str, str]:
    """
    Splits 'data:<mimetype>;base64,<encoded_data>' into (mime_type, base64_data).

    Raises:
        ValueError: if the string is not a base64 data URI.
    """
    match = _DATA_URI_RE.match((data_uri or "").strip())
    if not match:
        raise ValueError("Expected a data URI of the form 'data:<mimetype>;base64,<encoded_data>'")
    return match.group("mime"), re.sub(r"\s+", "", match.group("data"))


def normalize_image_bytes(
    image_bytes: bytes,
    *,
    max_dimension: int = 1600,
    jpeg_quality: int = 88,
    allow_png_alpha: bool = False,
) -> Tuple[bytes, str, int, int]:
    """
    Decode an image, apply EXIF orientation, downscale so the longest side is at most
    max_dimension, and re-encode as JPEG (PNG only when alpha is present and allowed).

    Returns: (normalized_bytes, mime_type, width, height)
    """
    if not image_bytes:
        raise ValueError("Empty image")

    with Image.open(io.BytesIO(image_bytes)) as im:
        im = ImageOps.exif_transpose(im)
        width, height = im.size

        longest = max(width, height)
        if longest > max_dimension:
            scale = max_dimension / float(longest)
            im = im.resize(
                (max(1, round(width * scale)), max(1, round(height * scale))),
                Image.Resampling.LANCZOS,
            )
            width, height = im.size

        has_alpha = im.mode in ("RGBA", "LA") or (im.mode == "P" and "transparency" in im.info)

        out = io.BytesIO()
        if has_alpha and allow_png_alpha:
            im.save(out, format="PNG", optimize=True)
            return out.getvalue(), "image/png", width, height

        if has_alpha:
            # Flatten onto white so transparent garment cut-outs stay readable.
            rgba = im.convert("RGBA")
            rgb = Image.new("RGB", rgba.size, (255, 255, 255))
            rgb.paste(rgba, mask=rgba.split()[-1])
        else:
            rgb = im.convert("RGB")
        rgb.save(out, format="JPEG", quality=jpeg_quality, optimize=True)
        return out.getvalue(), "image/jpeg", width, height


def normalize_image_bytes_with_budget(
    image_bytes: bytes,
    *,
    max_bytes: int,
    max_dimension: int = 1600,
    min_dimension: int = 512,
    jpeg_quality: int = 88,
    min_jpeg_quality: int = 65,
) -> Tuple[bytes, str, Optional[int], Optional[int]]:
    """
    Normalize an image and keep the output <= max_bytes by progressively
    downscaling and lowering JPEG quality (best-effort: the smallest attempt
    is returned when the budget cannot be met).
    """
    if max_bytes <= 0:
        raise ValueError("max_bytes must be > 0")

    dim = max_dimension
    quality = jpeg_quality
    best: Optional[Tuple[bytes, str, Optional[int], Optional[int]]] = None

    for _ in range(8):
        result = normalize_image_bytes(image_bytes, max_dimension=dim, jpeg_quality=quality)
        if best is None or len(result[0]) < len(best[0]):
            best = result
        if len(result[0]) <= max_bytes:
            return result

        if dim == min_dimension and quality == min_jpeg_quality:
            break
        dim = max(min_dimension, int(dim * 0.85))
        quality = max(min_jpeg_quality, quality - 6)

    logger.warning(f"Could not fit image under {max_bytes} bytes; using {len(best[0])} bytes")
    return best


def normalize_to_data_uri(image_bytes: bytes, *, max_bytes: int) -> str:
    """Normalizes an uploaded image and returns it as a data URI ready for the model."""
    out_bytes, mime_type, width, height = normalize_image_bytes_with_budget(image_bytes, max_bytes=max_bytes)
    logger.info(f"Normalized image to {width}x{height} {mime_type}, {len(out_bytes)} bytes")
    return to_data_uri(out_bytes, mime_type)
