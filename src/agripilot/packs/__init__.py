"""
AgriPilot Product Packs

YAML/JSON definitions of data sources and base policies.
"""
from __future__ import annotations

from .loader import (
    ProductPack,
    ProductPackLoader,
    load_product_pack_from_string,
    validate_reference_integrity,
)
from .schema import SCHEMA_VERSION, ProductPackSchema

__all__ = [
    "SCHEMA_VERSION",
    "ProductPack",
    "ProductPackLoader",
    "ProductPackSchema",
    "load_product_pack_from_string",
    "validate_reference_integrity",
]
