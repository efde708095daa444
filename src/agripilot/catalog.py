"""
AgriPilot Product Catalog

Loads product packs and serves base policies and data sources.

Key features:
- Load packs from YAML/JSON files or a directory
- Cache base policies by id and by product code
- Version-aware lookup of the newest product version
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .exceptions import ProductNotFoundError
from .models import BasePolicy, DataSource
from .packs import ProductPack, ProductPackLoader

logger = logging.getLogger(__name__)


@dataclass
class ProductCatalog:
    """
    Central point for product reference data.

    Usage:
        catalog = ProductCatalog()
        catalog.load_packs_from_directory("packs/")

        base = catalog.get_base_policy("vn-rice-drought-v1")
        latest = catalog.get_latest_version("RICE-DROUGHT")
        rainfall = catalog.get_data_source("ds-rainfall-chirps")
    """

    _loader: ProductPackLoader = field(default_factory=ProductPackLoader)

    # Caches
    _packs: dict[str, ProductPack] = field(default_factory=dict)
    _base_policies: dict[str, BasePolicy] = field(default_factory=dict)
    _by_product_code: dict[str, list[BasePolicy]] = field(default_factory=dict)
    _data_sources: dict[str, DataSource] = field(default_factory=dict)

    def load_pack(self, path: Union[str, Path]) -> ProductPack:
        """
        Load a product pack from a file and cache its contents.

        Raises:
            PackLoadError: If file cannot be loaded
            PackValidationError: If validation fails
        """
        pack = self._loader.load(path)
        self.add_pack(pack)
        logger.info(
            "Loaded pack %s: %d base policies, %d data sources",
            pack.id, len(pack.base_policies), len(pack.data_sources),
        )
        return pack

    def load_packs_from_directory(
        self,
        directory: Union[str, Path],
        pattern: str = "*.yaml",
    ) -> list[ProductPack]:
        directory = Path(directory)
        if not directory.is_dir():
            logger.warning("Pack directory %s does not exist", directory)
            return []
        return [self.load_pack(path) for path in sorted(directory.glob(pattern))]

    def add_pack(self, pack: ProductPack) -> None:
        self._packs[pack.id] = pack
        for data_source in pack.data_sources.values():
            self.add_data_source(data_source)
        for base_policy in pack.base_policies.values():
            self.add_base_policy(base_policy)

    def add_data_source(self, data_source: DataSource) -> None:
        self._data_sources[data_source.id] = data_source

    def add_base_policy(self, base_policy: BasePolicy) -> None:
        self._base_policies[base_policy.id] = base_policy
        versions = [
            p for p in self._by_product_code.get(base_policy.product_code, [])
            if p.id != base_policy.id
        ]
        versions.append(base_policy)
        # Newest version first
        versions.sort(key=lambda p: p.version, reverse=True)
        self._by_product_code[base_policy.product_code] = versions

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_base_policy(self, base_policy_id: str) -> BasePolicy:
        try:
            return self._base_policies[base_policy_id]
        except KeyError:
            raise ProductNotFoundError(
                message=f"Base policy '{base_policy_id}' not found",
                entity_id=base_policy_id,
            ) from None

    def get_latest_version(self, product_code: str) -> BasePolicy:
        versions = self._by_product_code.get(product_code)
        if not versions:
            raise ProductNotFoundError(
                message=f"No versions of product '{product_code}'",
                entity_id=product_code,
            )
        return versions[0]

    def get_data_source(self, data_source_id: str) -> DataSource:
        try:
            return self._data_sources[data_source_id]
        except KeyError:
            raise ProductNotFoundError(
                message=f"Data source '{data_source_id}' not found",
                entity_id=data_source_id,
            ) from None

    def list_base_policies(self, crop_type: Optional[str] = None) -> list[BasePolicy]:
        policies = list(self._base_policies.values())
        if crop_type:
            policies = [p for p in policies if p.crop_type == crop_type]
        return sorted(policies, key=lambda p: (p.product_code, -p.version))

    def list_data_sources(self) -> list[DataSource]:
        return sorted(self._data_sources.values(), key=lambda d: d.id)

    @property
    def pack_ids(self) -> list[str]:
        return sorted(self._packs)
