"""
Catalog Loader (``tariff_config.loader``).

Responsibility
--------------
Reads YAML catalog documents and compiles their entries into a
``TariffCatalog``: the rate terms, surcharges and pricing rules a caller
hands to the cost composer.

Document shape::

    rate_terms:
      - {id: road-fr, name: Road FR, rate_type: per_km, base_value: "2.50"}
    surcharges:
      - {id: fuel, name: Fuel, surcharge_type: fuel, ...}
    pricing_rules:
      - {id: vip, name: VIP discount, rule_type: discount, ...}

Every section is optional.  Several documents can be merged with
``merge_catalogs``; ids must stay unique across the merged result.

Failure modes
-------------
* Missing file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Malformed entry -> the compiler's ``DefinitionError`` subclasses.
* Duplicate id within a section -> ``MalformedCatalogEntryError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from tariff_config.compiler import compile_pricing_rule, compile_rate_term, compile_surcharge
from tariff_kernel.domain.pricing_rules import PricingRule
from tariff_kernel.domain.rates import RateTerm
from tariff_kernel.domain.surcharges import Surcharge
from tariff_kernel.exceptions import MalformedCatalogEntryError
from tariff_kernel.logging_config import get_logger

logger = get_logger("config.loader")

CATALOG_SECTIONS = ("rate_terms", "surcharges", "pricing_rules")


@dataclass(frozen=True)
class TariffCatalog:
    """Compiled catalog records, in document order."""

    rate_terms: tuple[RateTerm, ...] = ()
    surcharges: tuple[Surcharge, ...] = ()
    pricing_rules: tuple[PricingRule, ...] = ()

    def rule(self, rule_id: str) -> PricingRule | None:
        for rule in self.pricing_rules:
            if rule.id == rule_id:
                return rule
        return None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _check_unique(section: str, records: tuple) -> None:
    seen: set[str] = set()
    for record in records:
        if record.id in seen:
            raise MalformedCatalogEntryError(
                section, record.name, [f"id: duplicate id {record.id!r}"]
            )
        seen.add(record.id)


def compile_catalog(document: dict[str, Any]) -> TariffCatalog:
    """Compile an already parsed catalog document."""
    unknown = sorted(set(document) - set(CATALOG_SECTIONS))
    if unknown:
        raise MalformedCatalogEntryError(
            "catalog", "<document>", [f"{key}: unknown section" for key in unknown]
        )

    catalog = TariffCatalog(
        rate_terms=tuple(compile_rate_term(e) for e in document.get("rate_terms") or ()),
        surcharges=tuple(compile_surcharge(e) for e in document.get("surcharges") or ()),
        pricing_rules=tuple(compile_pricing_rule(e) for e in document.get("pricing_rules") or ()),
    )
    _check_unique("rate_term", catalog.rate_terms)
    _check_unique("surcharge", catalog.surcharges)
    _check_unique("pricing_rule", catalog.pricing_rules)
    return catalog


def load_catalog(path: Path | str) -> TariffCatalog:
    """Load and compile one YAML catalog document."""
    path = Path(path)
    catalog = compile_catalog(load_yaml_file(path))
    logger.info(
        "catalog_loaded",
        extra={
            "path": str(path),
            "rate_terms": len(catalog.rate_terms),
            "surcharges": len(catalog.surcharges),
            "pricing_rules": len(catalog.pricing_rules),
        },
    )
    return catalog


def merge_catalogs(*catalogs: TariffCatalog) -> TariffCatalog:
    """Concatenate catalogs in argument order."""
    merged = TariffCatalog(
        rate_terms=tuple(t for c in catalogs for t in c.rate_terms),
        surcharges=tuple(s for c in catalogs for s in c.surcharges),
        pricing_rules=tuple(r for c in catalogs for r in c.pricing_rules),
    )
    _check_unique("rate_term", merged.rate_terms)
    _check_unique("surcharge", merged.surcharges)
    _check_unique("pricing_rule", merged.pricing_rules)
    return merged
