"""
tariff_config -- authoring-time catalog compilation and engine settings.

Responsibility:
    Turns YAML documents and plain mappings into the frozen kernel records
    the engines evaluate, rejecting anything outside the closed
    condition/action vocabulary before it reaches evaluation.

Architecture position:
    Configuration -- sits above ``tariff_kernel`` and below
    ``tariff_services``.  The kernel and the engines MUST NEVER import
    from ``tariff_config``.

Usage:
    from tariff_config import load_catalog, load_settings

    catalog = load_catalog("catalog.yaml")
    settings = load_settings("settings.yaml")
"""

from tariff_config.compiler import compile_pricing_rule, compile_rate_term, compile_surcharge
from tariff_config.loader import TariffCatalog, compile_catalog, load_catalog, merge_catalogs
from tariff_config.settings import EngineSettings, load_settings, settings_from_dict

__all__ = [
    "EngineSettings",
    "TariffCatalog",
    "compile_catalog",
    "compile_pricing_rule",
    "compile_rate_term",
    "compile_surcharge",
    "load_catalog",
    "load_settings",
    "merge_catalogs",
    "settings_from_dict",
]
