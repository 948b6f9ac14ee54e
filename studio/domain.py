"""Value objects shared by the services, workers and API."""
import base64
import re
from dataclasses import dataclass, field, replace
from typing import Optional

from studio.errors import ValidationError

SHOT_KINDS = ("fullBody", "medium", "closeUp")
DEFAULT_SHOT_LABELS = {
    "fullBody": "Full body",
    "medium": "Medium shot",
    "closeUp": "Close-up",
}

ASPECT_RATIOS = ("9:16", "16:9", "1:1", "3:4", "4:3")
VIDEO_ASPECT_RATIOS = ("16:9", "9:16")

_DATA_URL_RE = re.compile(r"^data:([^;,]*);base64,(.*)$", re.DOTALL)


@dataclass(frozen=True)
class ImageReference:
    """An image (or clip) that is either embedded base64 data or a URL.

    Exactly one of ``data`` and ``url`` is set. Use ``inline``/``remote``
    rather than the constructor.
    """

    kind: str
    data: Optional[str] = None
    mime_type: Optional[str] = None
    url: Optional[str] = None

    def __post_init__(self):
        if self.kind == "inline":
            if not self.data or self.url is not None:
                raise ValueError("inline reference needs data and no url")
        elif self.kind == "remote":
            if not self.url or self.data is not None:
                raise ValueError("remote reference needs a url and no data")
        else:
            raise ValueError(f"unknown reference kind: {self.kind!r}")

    @classmethod
    def inline(cls, data, mime_type="image/png"):
        return cls(kind="inline", data=data, mime_type=mime_type or "image/png")

    @classmethod
    def remote(cls, url, mime_type=None):
        return cls(kind="remote", url=url, mime_type=mime_type)

    @classmethod
    def from_bytes(cls, raw, mime_type):
        return cls.inline(base64.b64encode(raw).decode("ascii"), mime_type)

    @classmethod
    def from_src(cls, src):
        """Parse a ``data:`` URL or treat anything else as a remote URL."""
        if src.startswith("data:"):
            match = _DATA_URL_RE.match(src)
            if not match:
                raise ValueError("Failed to read image data")
            return cls.inline(match.group(2), match.group(1) or "image/jpeg")
        return cls.remote(src)

    @property
    def is_inline(self):
        return self.kind == "inline"

    def decode(self):
        if not self.is_inline:
            raise ValueError("only inline references can be decoded")
        return base64.b64decode(self.data, validate=True)

    def to_src(self):
        if self.is_inline:
            return f"data:{self.mime_type};base64,{self.data}"
        return self.url


@dataclass(frozen=True)
class ReferenceImage:
    """A user-uploaded face or object reference."""

    data: str
    mime_type: str
    name: str = ""

    def __post_init__(self):
        if not self.mime_type:
            raise ValidationError("Reference image is missing its mime type")
        if not self.data:
            raise ValidationError("Reference image is empty")

    def to_part(self):
        return {"inlineData": {"data": self.data, "mimeType": self.mime_type}}

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            data=data.get("data", ""),
            mime_type=data.get("mimeType", ""),
            name=data.get("name", ""),
        )

    def to_dict(self):
        return {"data": self.data, "mimeType": self.mime_type, "name": self.name}


@dataclass(frozen=True)
class GenerationRequest:
    """Snapshot of the generation form. Read-only once created."""

    product_name: str
    clothing_style: str = "minimalist"
    clothing_season: str = "spring"
    model_gender: str = "female"
    background: str = "a fashion studio with a seamless backdrop"
    expression: str = "confident, looking straight at the camera"
    pose: str = "standing naturally"
    lighting: str = "soft studio lighting"
    aspect_ratio: str = "9:16"
    lens: str = ""
    additional_description: str = ""
    face_image: Optional[ReferenceImage] = None
    object_image: Optional[ReferenceImage] = None

    _FIELDS = {
        "productName": "product_name",
        "clothingStyle": "clothing_style",
        "clothingSeason": "clothing_season",
        "modelGender": "model_gender",
        "background": "background",
        "expression": "expression",
        "pose": "pose",
        "lighting": "lighting",
        "aspectRatio": "aspect_ratio",
        "lens": "lens",
        "additionalDescription": "additional_description",
    }

    @classmethod
    def from_dict(cls, data):
        kwargs = {}
        for key, attr in cls._FIELDS.items():
            value = str(data.get(key) or "").strip()
            # Blank fields fall back to the defaults
            if value:
                kwargs[attr] = value
        kwargs.setdefault("product_name", "")
        kwargs["face_image"] = ReferenceImage.from_dict(data.get("faceImage"))
        kwargs["object_image"] = ReferenceImage.from_dict(data.get("objectImage"))
        return cls(**kwargs)

    def to_dict(self):
        data = {key: getattr(self, attr) for key, attr in self._FIELDS.items()}
        data["faceImage"] = self.face_image.to_dict() if self.face_image else None
        data["objectImage"] = self.object_image.to_dict() if self.object_image else None
        return data

    def with_references(self, face_image=None, object_image=None):
        return replace(self, face_image=face_image, object_image=object_image)

    @property
    def has_face_image(self):
        return self.face_image is not None

    @property
    def has_object_image(self):
        return self.object_image is not None


@dataclass
class ShotResult:
    """One generated image."""

    shot_kind: str
    label: str
    image: ImageReference


@dataclass
class ResolvedResource:
    data: bytes
    mime_type: str = "image/png"
    strategy: str = field(default="inline")
