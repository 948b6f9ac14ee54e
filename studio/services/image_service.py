import io
from PIL import Image as PILImage, UnidentifiedImageError

from studio.errors import ValidationError


ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png"}
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5 MB
COMPRESS_THRESHOLD = 500 * 1024  # leave small uploads untouched
MAX_DIMENSION = 1920


def validate_reference(image_bytes, content_type):
    """Validate an uploaded face/object reference image.

    - Checks declared type and file size
    - Verifies it's a real image via Pillow

    Raises:
        ValidationError on invalid input
    """
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError("Only PNG and JPEG images are supported")
    if len(image_bytes) > MAX_FILE_SIZE:
        raise ValidationError(
            f"Image too large: {len(image_bytes)} bytes (max {MAX_FILE_SIZE // 1024 // 1024}MB)"
        )

    try:
        img = PILImage.open(io.BytesIO(image_bytes))
        img.verify()  # verify it's a real image
    except Exception:
        raise ValidationError("Invalid image file")


def compress_reference(image_bytes, content_type):
    """Shrink large references before they are sent to the provider.

    Returns:
        (bytes, content_type): unchanged when under the threshold,
        otherwise a JPEG that fits within MAX_DIMENSION.
    """
    if len(image_bytes) <= COMPRESS_THRESHOLD:
        return image_bytes, content_type

    # Re-open (verify() closes the file) and re-encode
    img = PILImage.open(io.BytesIO(image_bytes))
    if img.mode != "RGB":
        img = img.convert("RGB")
    img.thumbnail((MAX_DIMENSION, MAX_DIMENSION), PILImage.LANCZOS)

    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=80)
    return buffer.getvalue(), "image/jpeg"


def reencode_jpeg(image_bytes, quality=95):
    """Decode arbitrary image bytes and export them as a fresh JPEG.

    Raises:
        ValueError when the bytes are not a decodable image
    """
    try:
        img = PILImage.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Response is not a decodable image: {e}")
    if img.mode != "RGB":
        img = img.convert("RGB")
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()
