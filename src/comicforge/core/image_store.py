"""On-disk image storage for uploaded and generated images.

Images arrive as inline base64 strings, optionally wrapped in a data URL
(``data:image/png;base64,...``).  The store decodes them, writes them under
``<uploads_dir>/images/`` and hands back a relative path such as
``images/original-1a2b3c4d-1718000000000.png``.  The relative path is what
gets persisted in the database; :meth:`ImageStore.url_for` turns it into a
fully-qualified URL at read time, so the public host can change without
rewriting stored rows.

Filename layout::

    <label>-<8 hex chars>-<epoch milliseconds>.<ext>

where ``label`` defaults to ``image`` and ``ext`` follows the MIME type in the
data URL marker (``png`` when there is none).
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads"
IMAGES_SUBDIR = "images"
DEFAULT_MIME_TYPE = "image/png"

_MIME_TO_EXT = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}
_DATA_URL_RE = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+)")
_LABEL_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]+")


def detect_mime_type(data: str) -> str:
    """Infer the MIME type from a ``data:image/...`` marker.

    Unknown or missing markers fall back to ``image/png``.  ``image/jpg`` is
    normalised to ``image/jpeg``.
    """
    match = _DATA_URL_RE.match(data)
    if not match:
        return DEFAULT_MIME_TYPE
    mime_type = match.group(1).lower()
    if mime_type == "image/jpg":
        return "image/jpeg"
    return mime_type if mime_type in _MIME_TO_EXT else DEFAULT_MIME_TYPE


def extension_for(mime_type: str) -> str:
    return _MIME_TO_EXT.get(mime_type, "png")


def decode_image_data(data: str) -> tuple[bytes, str]:
    """Decode an inline image into raw bytes and its MIME type.

    Args:
        data: Bare base64 or a ``data:`` URL.

    Returns:
        Tuple of ``(image_bytes, mime_type)``.

    Raises:
        ValueError: If the payload is not valid base64 or decodes to nothing.
    """
    payload = data.split(",", 1)[1] if "," in data else data
    try:
        image_bytes = base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Invalid base64 image data") from e
    if not image_bytes:
        raise ValueError("Empty image data")
    return image_bytes, detect_mime_type(data)


def to_data_url(image_bytes: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"


def is_base64_image(value: str) -> bool:
    """Heuristic check for an inline image rather than a path or URL."""
    return value.startswith("data:image/") or (len(value) > 100 and not value.startswith("http"))


class ImageStore:
    """Writes, deletes and addresses images below a root directory.

    Attributes:
        root: Uploads directory.  Everything the store touches lives below it.
        base_url: Public base URL of the backend, without trailing slash.
    """

    def __init__(self, root: Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        (self.root / IMAGES_SUBDIR).mkdir(parents=True, exist_ok=True)

    def upload(self, data: str, label: str | None = None) -> str:
        """Decode an inline image and store it.

        Args:
            data: Bare base64 or data URL.
            label: Optional filename prefix.  Characters outside
                ``[A-Za-z0-9_-]`` are replaced with ``-``.

        Returns:
            Relative path of the stored file (``images/<name>``).

        Raises:
            ValueError: If the data cannot be decoded.
        """
        image_bytes, mime_type = decode_image_data(data)
        return self.save_bytes(image_bytes, mime_type, label)

    def save_bytes(self, image_bytes: bytes, mime_type: str, label: str | None = None) -> str:
        prefix = _LABEL_UNSAFE_RE.sub("-", label).strip("-") if label else ""
        unique_id = uuid.uuid4().hex[:8]
        timestamp = int(time.time() * 1000)
        filename = f"{prefix or 'image'}-{unique_id}-{timestamp}.{extension_for(mime_type)}"

        filepath = self.root / IMAGES_SUBDIR / filename
        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_bytes(image_bytes)

        logger.info(f"Stored image {filename} ({len(image_bytes)} bytes)")
        return f"{IMAGES_SUBDIR}/{filename}"

    def resolve(self, relative_path: str) -> Path:
        """Map a stored path to a file below :attr:`root`.

        Accepts ``images/x.png``, ``/uploads/images/x.png`` or
        ``uploads/images/x.png``.

        Raises:
            ValueError: If the path escapes the uploads directory.
        """
        cleaned = relative_path.lstrip("/")
        public = PUBLIC_PREFIX.lstrip("/") + "/"
        if cleaned.startswith(public):
            cleaned = cleaned[len(public):]

        root = self.root.resolve()
        full_path = (root / cleaned).resolve()
        if full_path != root and root not in full_path.parents:
            logger.warning(f"Path traversal attempt detected: {relative_path}")
            raise ValueError("Invalid path: outside of uploads directory")
        return full_path

    def delete(self, relative_path: str) -> None:
        """Best-effort removal; failures are logged and swallowed.

        The file may already be gone, and a stale reference must never turn
        into an error for the caller.
        """
        try:
            self.resolve(relative_path).unlink()
            logger.info(f"Deleted image {relative_path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Error deleting image {relative_path}: {e}")

    def public_path(self, relative_path: str) -> str:
        """Server-relative path the static mount serves the file under."""
        if relative_path.startswith(PUBLIC_PREFIX):
            return relative_path
        return f"{PUBLIC_PREFIX}/{relative_path.lstrip('/')}"

    def url_for(self, relative_path: str) -> str:
        """Fully-qualified URL for a stored path.

        Absolute ``http(s)`` URLs are returned unchanged.
        """
        if relative_path.startswith(("http://", "https://")):
            return relative_path
        return f"{self.base_url}{self.public_path(relative_path)}"

    def resolve_reference(self, value: str | None) -> str | None:
        """URL for a stored image reference as held on a comic.

        Empty values, inline data URLs and absolute URLs pass through.
        """
        if not value or value.startswith(("http://", "https://", "data:image/")):
            return value
        return self.url_for(value)
