"""
Catalog Service Factory

Single entry point for the catalog view used by the ordering engine.

Usage:
    from canteen.services.catalog import get_catalog

    catalog = get_catalog()
    item = await catalog.get_item(db, food_item_id)
"""

import logging
from functools import lru_cache

from canteen.services.catalog.base import BaseCatalog, FoodItemSnapshot
from canteen.services.catalog.sql import SqlCatalog

logger = logging.getLogger(__name__)


@lru_cache()
def get_catalog() -> BaseCatalog:
    """
    Get the configured catalog instance (cached).

    Returns:
        BaseCatalog: Catalog view over the shared store
    """
    logger.info("Catalog: Using SqlCatalog")
    return SqlCatalog()


def reset_catalog() -> None:
    """Clear the cached catalog instance."""
    get_catalog.cache_clear()
    logger.debug("Catalog cache cleared")


__all__ = [
    "get_catalog",
    "reset_catalog",
    "BaseCatalog",
    "FoodItemSnapshot",
    "SqlCatalog",
]
