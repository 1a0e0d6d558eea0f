"""
Gallery Module.

Asset enumeration and the smart filter that ranks assets before OCR.
"""

from .asset import Asset, AssetQuery, AssetSource, DirectoryAssetSource
from .smart_filter import SmartFilter, FilterOptions, FilterDecision

__all__ = [
    'Asset',
    'AssetQuery',
    'AssetSource',
    'DirectoryAssetSource',
    'SmartFilter',
    'FilterOptions',
    'FilterDecision'
]
