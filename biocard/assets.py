"""
Assets: avatars, logos, backgrounds and gallery images.

An asset is one of three things: inline text (usually an emoji), a remote
URL, or an embedded binary image. On the wire every asset is a plain string;
binary images travel as ``data:<mime>;base64,...`` URIs.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

DATA_URI_PREFIX = "data:image/"
FALLBACK_MIME_TYPE = "image/png"


class AssetKind(str, Enum):
    TEXT = "text"
    REMOTE = "remote"
    IMAGE = "image"


@dataclass(frozen=True)
class TextAsset:
    text: Optional[str] = None

    kind = AssetKind.TEXT

    @property
    def columns(self) -> tuple[AssetKind, Optional[str], Optional[bytes]]:
        return self.kind, self.text, None


@dataclass(frozen=True)
class RemoteAsset:
    url: str

    kind = AssetKind.REMOTE

    @property
    def columns(self) -> tuple[AssetKind, Optional[str], Optional[bytes]]:
        return self.kind, self.url, None


@dataclass(frozen=True)
class ImageAsset:
    data: bytes

    kind = AssetKind.IMAGE

    @property
    def columns(self) -> tuple[AssetKind, Optional[str], Optional[bytes]]:
        return self.kind, None, self.data


Asset = Union[TextAsset, RemoteAsset, ImageAsset]


def parse_asset(value: Optional[str]) -> Asset:
    """
    Classify an incoming asset string.

    A base64 data URI becomes an image (falling back to text when the payload
    does not decode), an http(s) URL becomes a remote asset, anything else is
    kept as text. Never raises.
    """
    if not value:
        return TextAsset()

    if value.startswith(DATA_URI_PREFIX):
        header, sep, payload = value.partition(",")
        if sep:
            try:
                return ImageAsset(base64.b64decode(payload, validate=True))
            except (binascii.Error, ValueError):
                logger.debug("Invalid base64 payload in %s asset", header)
                return TextAsset(value)

    if value.startswith("http://") or value.startswith("https://"):
        return RemoteAsset(value)

    return TextAsset(value)


def detect_mime_type(data: bytes) -> str:
    """Sniff an image MIME type from its bytes."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            mime = Image.MIME.get(img.format or "")
            if mime:
                return mime
    except (UnidentifiedImageError, OSError, ValueError):
        pass

    head = data[:256].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return "image/svg+xml"
    return FALLBACK_MIME_TYPE


def asset_to_string(asset: Optional[Asset]) -> str:
    if asset is None:
        return ""
    if isinstance(asset, ImageAsset):
        if not asset.data:
            return ""
        encoded = base64.b64encode(asset.data).decode("ascii")
        return f"data:{detect_mime_type(asset.data)};base64,{encoded}"
    if isinstance(asset, RemoteAsset):
        return asset.url
    return asset.text or ""


def asset_from_columns(
    kind: Optional[str], text: Optional[str], data: Optional[bytes]
) -> Optional[Asset]:
    """Rebuild an asset from its stored ``(kind, text, data)`` columns."""
    if kind is None:
        return None
    kind = AssetKind(kind)
    if kind == AssetKind.IMAGE:
        return ImageAsset(data or b"")
    if kind == AssetKind.REMOTE:
        return RemoteAsset(text or "")
    return TextAsset(text)


def optional_asset(value: Optional[str]) -> Optional[Asset]:
    """Like :func:`parse_asset`, but an empty value means "no asset"."""
    if not value:
        return None
    return parse_asset(value)
