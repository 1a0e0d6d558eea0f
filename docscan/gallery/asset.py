"""
Asset Sources.

An asset is one image in a media collection, identified by its URI. Asset
sources enumerate assets and open their content; DirectoryAssetSource
serves a folder tree of image files.

Author: ML Engineering Team
"""

import mimetypes
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from PIL import Image, UnidentifiedImageError

from ..utils.exceptions import AssetReadError
from ..utils.helpers import uri_to_path
from ..utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)

IMAGE_EXTENSIONS = frozenset({'.jpg', '.jpeg', '.png', '.bmp', '.tif', '.tiff', '.webp', '.gif', '.heic'})


@dataclass(frozen=True)
class Asset:
    """
    One image of the collection.

    Attributes:
        uri: Stable identifier; a path, file:// URI or provider URI
        filename: Base name of the image
        width: Pixel width, 0 when unknown
        height: Pixel height, 0 when unknown
        created_at: Creation time as a POSIX timestamp in seconds
        file_size: Size in bytes, when the source can report it
        mime_type: MIME type, when known
    """
    uri: str
    filename: str
    width: int = 0
    height: int = 0
    created_at: float = 0.0
    file_size: Optional[int] = None
    mime_type: Optional[str] = None

    @property
    def id(self) -> str:
        return self.uri

    @property
    def aspect_ratio(self) -> Optional[float]:
        """Long side over short side, or None without dimensions."""
        if self.width <= 0 or self.height <= 0:
            return None
        return max(self.width, self.height) / min(self.width, self.height)

    @classmethod
    def from_uri(cls, uri: str) -> 'Asset':
        """Minimal asset for a URI the source no longer describes."""
        name = uri.rstrip('/').rsplit('/', 1)[-1]
        return cls(uri=uri, filename=name)


@dataclass(frozen=True)
class AssetQuery:
    """
    Enumeration constraints.

    Attributes:
        created_after: Only assets created strictly after this timestamp
        limit: Maximum number of assets to return
    """
    created_after: Optional[float] = None
    limit: Optional[int] = None


class AssetSource(ABC):
    """Enumerates assets and gives access to their content."""

    name = "assets"

    @abstractmethod
    def list_assets(self, query: Optional[AssetQuery] = None) -> List[Asset]:
        """Return assets matching the query; URIs and creation times must be stable."""

    def get_asset(self, uri: str) -> Optional[Asset]:
        """Describe a single asset, or None if the source no longer has it."""
        return None

    def open_asset(self, uri: str) -> BinaryIO:
        """
        Open asset content for reading.

        Raises:
            AssetReadError: If the content cannot be opened.
        """
        path = uri_to_path(uri)
        if path is None:
            raise AssetReadError(uri, f"source '{self.name}' cannot open non-local URIs")
        try:
            return open(path, 'rb')
        except OSError as e:
            raise AssetReadError(uri, str(e))

    def has_permission(self) -> bool:
        """Whether the collection can be read at all."""
        return True


class DirectoryAssetSource(AssetSource):
    """
    Images under a directory tree.

    Creation time is the file modification time, which survives copies
    better than platform birth times.

    Example:
        >>> source = DirectoryAssetSource("~/Pictures")
        >>> assets = source.list_assets()
    """

    def __init__(self, root: Union[str, Path], recursive: bool = True) -> None:
        self.root = Path(root).expanduser().resolve()
        self.recursive = recursive
        self.name = str(self.root)

    def has_permission(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.R_OK | os.X_OK)

    def list_assets(self, query: Optional[AssetQuery] = None) -> List[Asset]:
        query = query or AssetQuery()
        pattern = '**/*' if self.recursive else '*'
        assets = []

        for path in sorted(self.root.glob(pattern)):
            if path.suffix.lower() not in IMAGE_EXTENSIONS or not path.is_file():
                continue
            asset = self._describe(path)
            if asset is None:
                continue
            if query.created_after is not None and asset.created_at <= query.created_after:
                continue
            assets.append(asset)
            if query.limit is not None and len(assets) >= query.limit:
                break

        logger.debug(f"Found {len(assets)} images under {self.root}")
        return assets

    def get_asset(self, uri: str) -> Optional[Asset]:
        path = uri_to_path(uri)
        if path is None or not path.is_file():
            return None
        return self._describe(path)

    @staticmethod
    def _describe(path: Path) -> Optional[Asset]:
        try:
            stat = path.stat()
        except OSError as e:
            logger.debug(f"Skipping {path}: {e}")
            return None

        width = height = 0
        try:
            # Reads the header only
            with Image.open(path) as image:
                width, height = image.size
        except (OSError, UnidentifiedImageError):
            logger.debug(f"Could not read dimensions of {path}")

        return Asset(
            uri=str(path),
            filename=path.name,
            width=width,
            height=height,
            created_at=stat.st_mtime,
            file_size=stat.st_size,
            mime_type=mimetypes.guess_type(path.name)[0]
        )
