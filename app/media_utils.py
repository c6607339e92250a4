import io
from typing import Any, Dict, Tuple

from PIL import ExifTags, Image, ImageOps


def _open_decoded(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    # Force a full decode so truncated payloads fail here, not halfway through a resize
    img.load()
    return img


def _to_rgb(img: Image.Image) -> Image.Image:
    if img.mode in ('RGBA', 'LA', 'P'):
        return img.convert('RGB')
    if img.mode not in ('RGB', 'L'):
        return img.convert('RGB')
    return img


def _exif_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace").strip("\x00")
    if isinstance(value, (int, str, bool)) or value is None:
        return value
    if isinstance(value, (tuple, list)):
        return [_exif_value(v) for v in value]
    try:
        return float(value)
    except (TypeError, ValueError):
        return str(value)


def read_exif(img: Image.Image) -> Dict[str, Any]:
    exif = img.getexif()
    if not exif:
        return {}
    return {ExifTags.TAGS.get(tag_id, str(tag_id)): _exif_value(value) for tag_id, value in exif.items()}


def read_image_metadata(data: bytes) -> Dict[str, Any]:
    """Decode an image and describe it.

    Raises PIL.UnidentifiedImageError / OSError when the bytes are not a
    decodable image.
    """
    with _open_decoded(data) as img:
        dpi = img.info.get("dpi")
        return {
            "width": img.width,
            "height": img.height,
            "format": (img.format or "").lower(),
            "mode": img.mode,
            "hasAlpha": img.mode in ('RGBA', 'LA', 'PA') or (img.mode == 'P' and 'transparency' in img.info),
            "density": _exif_value(dpi[0]) if dpi else None,
            "frames": getattr(img, "n_frames", 1),
            "exif": read_exif(img),
        }


def create_thumbnail_bytes(data: bytes, size: int, quality: int = 80) -> Tuple[bytes, int, int]:
    """JPEG thumbnail that fits inside size x size, aspect ratio preserved."""
    with _open_decoded(data) as img:
        img = _to_rgb(ImageOps.exif_transpose(img))
        img.thumbnail((size, size), Image.Resampling.LANCZOS)
        buf = io.BytesIO()
        img.save(buf, format='JPEG', quality=quality, optimize=True)
        return buf.getvalue(), img.width, img.height


def optimize_for_web(data: bytes, quality: int = 85, max_dimension: int = 2048) -> Tuple[bytes, int, int]:
    """Progressive JPEG with the longest edge capped at max_dimension."""
    with _open_decoded(data) as img:
        img = _to_rgb(ImageOps.exif_transpose(img))
        if max(img.size) > max_dimension:
            img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        buf = io.BytesIO()
        img.save(buf, format='JPEG', quality=quality, optimize=True, progressive=True)
        return buf.getvalue(), img.width, img.height


def recompress_image(data: bytes, quality: int) -> bytes:
    with _open_decoded(data) as img:
        img = _to_rgb(img)
        buf = io.BytesIO()
        img.save(buf, format='JPEG', quality=quality, optimize=True)
        return buf.getvalue()
