"""Validate the generation form before anything touches the network."""
import base64
import binascii

from studio.domain import ASPECT_RATIOS, GenerationRequest, ImageReference, ReferenceImage
from studio.errors import ValidationError
from studio.services import image_service

MAX_PRODUCT_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500


def _check_text(form, errors):
    name = str(form.get("productName") or "").strip()
    if not name:
        errors["productName"] = "Product name is required"
    elif len(name) > MAX_PRODUCT_NAME_LENGTH:
        errors["productName"] = (
            f"Product name must be at most {MAX_PRODUCT_NAME_LENGTH} characters"
        )

    description = str(form.get("additionalDescription") or "")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        errors["additionalDescription"] = (
            f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )

    aspect_ratio = str(form.get("aspectRatio") or "").strip() or "9:16"
    if aspect_ratio not in ASPECT_RATIOS:
        errors["aspectRatio"] = f"Aspect ratio must be one of {', '.join(ASPECT_RATIOS)}"


def _load_reference(raw):
    """Validate and compress one uploaded reference.

    Accepts ``{"data", "mimeType", "name"}`` where ``data`` is base64 or a
    data URL.
    """
    if not isinstance(raw, dict):
        raise ValidationError("Reference image must be an object")
    data = raw.get("data") or ""
    mime_type = (raw.get("mimeType") or "").lower()
    if data.startswith("data:"):
        try:
            parsed = ImageReference.from_src(data)
        except ValueError:
            raise ValidationError("Reference image is not a valid data URL")
        mime_type = mime_type or parsed.mime_type.lower()
        data = parsed.data
    if not mime_type:
        raise ValidationError("Reference image is missing its mime type")
    if not data:
        raise ValidationError("Reference image is empty")

    try:
        image_bytes = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Reference image is not valid base64")

    image_service.validate_reference(image_bytes, mime_type)
    image_bytes, mime_type = image_service.compress_reference(image_bytes, mime_type)
    if mime_type == "image/jpg":
        mime_type = "image/jpeg"
    return ReferenceImage(
        data=base64.b64encode(image_bytes).decode("ascii"),
        mime_type=mime_type,
        name=str(raw.get("name") or "")[:255],
    )


def validate_form(form):
    """Build a GenerationRequest from submitted JSON.

    Raises:
        ValidationError with a per-field ``errors`` dict.
    """
    if not isinstance(form, dict):
        raise ValidationError("Request body must be a JSON object")

    errors = {}
    _check_text(form, errors)

    references = {}
    for key in ("faceImage", "objectImage"):
        if form.get(key):
            try:
                references[key] = _load_reference(form[key])
            except ValidationError as e:
                errors[key] = e.message

    if errors:
        raise ValidationError("Some fields are invalid", errors=errors)

    fields = {k: v for k, v in form.items() if k not in ("faceImage", "objectImage")}
    fields["productName"] = str(form["productName"]).strip()
    request = GenerationRequest.from_dict(fields)
    return request.with_references(
        face_image=references.get("faceImage"),
        object_image=references.get("objectImage"),
    )
