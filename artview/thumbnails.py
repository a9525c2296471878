"""Thumbnail generation and temporary preview files.

Session history keeps one small JPEG per session.  ``make_thumbnail`` wraps
Pillow: the image is fitted inside a ``max_size`` square with its aspect
ratio preserved and any alpha channel flattened onto white.

``PreviewSlot`` owns the single temporary file the UI displays as the
current image preview.  Showing a new image deletes the superseded file so
repeated uploads and restores do not leave files behind.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from . import config
from .models import ImageFile

log = logging.getLogger(__name__)

_BACKGROUND: Tuple[int, int, int] = (255, 255, 255)
_EXTENSIONS = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}


def make_thumbnail(data: bytes, max_size: Optional[int] = None, quality: Optional[int] = None) -> bytes:
    """Return JPEG bytes fitting within ``max_size`` x ``max_size``.

    Raises:
        ValueError: If ``data`` cannot be opened as an image.
    """

    size = max_size or config.THUMB_MAX
    q = config.THUMB_QUALITY if quality is None else quality
    try:
        src = Image.open(io.BytesIO(data))
        src.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("Bytes are not a supported image format") from exc

    src = src.convert("RGBA")
    src.thumbnail((size, size), Image.LANCZOS)

    flat = Image.new("RGB", src.size, _BACKGROUND)
    flat.paste(src, mask=src.split()[3])

    out = io.BytesIO()
    flat.save(out, format="JPEG", quality=max(1, min(95, int(q))))
    return out.getvalue()


def thumbnail_image(image: ImageFile, max_size: Optional[int] = None, quality: Optional[int] = None) -> ImageFile:
    stem = Path(image.name or "image").stem or "image"
    return ImageFile(name=f"{stem}.jpg", mime="image/jpeg", data=make_thumbnail(image.data, max_size, quality))


def thumbnail_data_url(image: ImageFile, max_size: Optional[int] = None, quality: Optional[int] = None) -> str:
    return thumbnail_image(image, max_size, quality).to_data_url()


def load_image_file(path: str | os.PathLike[str]) -> ImageFile:
    """Read an uploaded file from disk into an ``ImageFile``; the MIME type comes from Pillow."""

    p = Path(path)
    data = p.read_bytes()
    try:
        with Image.open(io.BytesIO(data)) as img:
            mime = Image.MIME.get(img.format or "", "image/jpeg")
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"{p.name} is not a supported image") from exc
    return ImageFile(name=p.name, mime=mime, data=data)


class PreviewSlot:
    """Holds at most one temporary preview file at a time."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        self.directory = Path(directory) if directory else None
        self.path: Optional[Path] = None

    def show(self, image: Optional[ImageFile]) -> Optional[str]:
        """Write ``image`` to a new temp file, release the previous one, return the new path."""

        if image is None or not image.data:
            self.release()
            return None
        if self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
        suffix = _EXTENSIONS.get(image.mime, Path(image.name).suffix or ".img")
        fd, name = tempfile.mkstemp(prefix="artview-preview-", suffix=suffix, dir=self.directory)
        with os.fdopen(fd, "wb") as fh:
            fh.write(image.data)
        self.release()
        self.path = Path(name)
        return name

    def release(self) -> None:
        if self.path is None:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("Could not delete preview file %s: %s", self.path, exc)
        self.path = None

    def __enter__(self) -> "PreviewSlot":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


__all__ = [
    "PreviewSlot",
    "load_image_file",
    "make_thumbnail",
    "thumbnail_data_url",
    "thumbnail_image",
]
