"""
Image Preprocessing Module.

Prepares an asset for OCR:
    - Materializes non-local URIs into a tracked temporary file
    - Applies EXIF orientation and converts to RGB
    - Computes the content hash over the decoded pixels
    - Downscales images larger than the configured maximum dimension

The content hash is computed the same way for every URI scheme, so one
image reached through two different URIs deduplicates.

Author: ML Engineering Team
"""

import hashlib
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from config import get_config
from ..gallery.asset import Asset, AssetSource
from ..utils.exceptions import AssetReadError
from ..utils.helpers import uri_to_path
from ..utils.logger import get_logger
from .temp_files import TempFileTracker

# Initialize module logger
logger = get_logger(__name__)

# Guard against decompression bombs while still allowing large scans
Image.MAX_IMAGE_PIXELS = 200_000_000

EXIF_ORIENTATION = 0x0112


def content_hash(image: Image.Image) -> str:
    """
    SHA-256 of decoded pixel content.

    Mode and size are part of the digest so that equal byte buffers of
    different geometry never collide.
    """
    digest = hashlib.sha256()
    digest.update(f"{image.mode}:{image.size[0]}x{image.size[1]}:".encode('ascii'))
    digest.update(image.tobytes())
    return digest.hexdigest()


@dataclass
class PreparedImage:
    """
    An asset ready for OCR.

    Attributes:
        path: Local file the engines read
        width: Width of the file at ``path``
        height: Height of the file at ``path``
        content_hash: Hash of the decoded, oriented pixels
        resized: Whether the image was downscaled
    """
    path: str
    width: int
    height: int
    content_hash: str
    resized: bool = False


class ImagePreprocessor:
    """
    Turns an asset into a local, normalized image plus its content hash.

    Attributes:
        max_dimension: Longest side after downscaling
        temp_format: Pillow format of rewritten images

    Example:
        >>> preprocessor = ImagePreprocessor()
        >>> with TempFileTracker() as tracker:
        ...     prepared = preprocessor.prepare(asset, source, tracker)
    """

    def __init__(self, max_dimension: Optional[int] = None, temp_format: Optional[str] = None) -> None:
        self.max_dimension = max_dimension or get_config("preprocessing.max_dimension", 1500)
        self.temp_format = (temp_format or get_config("preprocessing.temp_format", "PNG")).upper()

    def prepare(self, asset: Asset, source: AssetSource, tracker: TempFileTracker) -> PreparedImage:
        """
        Prepare an asset for OCR.

        Every file created here is registered with ``tracker``.

        Raises:
            AssetReadError: If the content cannot be read or decoded.
        """
        local_path = self._materialize(asset, source, tracker)

        try:
            with Image.open(local_path) as opened:
                opened.load()
                orientation = opened.getexif().get(EXIF_ORIENTATION, 1)
                changed = orientation != 1
                image = ImageOps.exif_transpose(opened) if changed else opened
                if image.mode != 'RGB':
                    image = self._convert_to_rgb(image)
                    changed = True

                digest = content_hash(image)
                image, resized = self._resize_if_needed(image)
                changed = changed or resized

                if changed:
                    output = tracker.create(f".{self.temp_format.lower()}")
                    image.save(output, format=self.temp_format)
                    local_path = output
                width, height = image.size
        except (OSError, UnidentifiedImageError, Image.DecompressionBombError, ValueError) as e:
            raise AssetReadError(asset.uri, f"cannot decode image: {e}")

        return PreparedImage(str(local_path), width, height, digest, resized)

    def _materialize(self, asset: Asset, source: AssetSource, tracker: TempFileTracker) -> Path:
        """Return a local path for the asset, copying provider content to a temp file."""
        path = uri_to_path(asset.uri)
        if path is not None and path.is_file():
            return path

        suffix = Path(asset.filename).suffix or ".img"
        target = tracker.create(suffix)
        try:
            with source.open_asset(asset.uri) as stream, open(target, 'wb') as out:
                shutil.copyfileobj(stream, out)
        except OSError as e:
            raise AssetReadError(asset.uri, f"cannot copy content: {e}")

        logger.debug(f"Materialized {asset.uri} to {target}")
        return target

    @staticmethod
    def _convert_to_rgb(image: Image.Image) -> Image.Image:
        """Convert to RGB, flattening transparency onto white."""
        if image.mode in ('RGBA', 'LA') or (image.mode == 'P' and 'transparency' in image.info):
            image = image.convert('RGBA')
            background = Image.new('RGB', image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[3])
            return background
        return image.convert('RGB')

    def _resize_if_needed(self, image: Image.Image):
        width, height = image.size
        longest = max(width, height)
        if longest <= self.max_dimension:
            return image, False

        scale = self.max_dimension / longest
        new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
        logger.debug(f"Resizing from {width}x{height} to {new_size[0]}x{new_size[1]}")
        return image.resize(new_size, Image.Resampling.LANCZOS), True
