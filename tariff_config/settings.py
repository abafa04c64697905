"""
Engine settings (``tariff_config.settings``).

Loads the control thresholds and the tax schedule from a YAML document::

    control:
      line_high_variance_pct: "10"
      line_critical_variance_pct: "25"
      invoice_critical_variance_pct: "20"
    taxes:
      vat_rates: {FR: "20", DE: "19"}
      export_tax_rate: "0.5"
      export_tax_modes: [sea, air]

Absent keys keep their defaults.  Values end up in the kernel's frozen
``ControlThresholds`` / ``TaxSchedule`` records, so engines read them
without depending on this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from tariff_config.loader import load_yaml_file
from tariff_kernel.domain.control import DEFAULT_VAT_RATES, ControlThresholds, TaxSchedule
from tariff_kernel.exceptions import SettingsError
from tariff_kernel.logging_config import get_logger

logger = get_logger("config.settings")

_THRESHOLD_FIELDS = frozenset(f.name for f in fields(ControlThresholds))
_TAX_FIELDS = frozenset({"vat_rates", "export_tax_rate", "export_tax_modes"})


@dataclass(frozen=True)
class EngineSettings:
    control: ControlThresholds = field(default_factory=ControlThresholds)
    taxes: TaxSchedule = field(default_factory=TaxSchedule)


def _decimal(setting: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise SettingsError(setting, f"expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise SettingsError(setting, f"expected a number, got {value!r}") from None


def _control(data: dict[str, Any]) -> ControlThresholds:
    unknown = sorted(set(data) - _THRESHOLD_FIELDS)
    if unknown:
        raise SettingsError(f"control.{unknown[0]}", "unknown setting")
    values = {k: _decimal(f"control.{k}", v) for k, v in data.items()}
    try:
        return ControlThresholds(**values)
    except ValueError as exc:
        raise SettingsError("control", str(exc)) from exc


def _taxes(data: dict[str, Any]) -> TaxSchedule:
    unknown = sorted(set(data) - _TAX_FIELDS)
    if unknown:
        raise SettingsError(f"taxes.{unknown[0]}", "unknown setting")

    vat_rates = dict(DEFAULT_VAT_RATES)
    overrides = data.get("vat_rates") or {}
    if not isinstance(overrides, dict):
        raise SettingsError("taxes.vat_rates", "expected a mapping of country to rate")
    for country, rate in overrides.items():
        vat_rates[str(country).upper()] = _decimal(f"taxes.vat_rates.{country}", rate)

    kwargs: dict[str, Any] = {"vat_rates": vat_rates}
    if "export_tax_rate" in data:
        kwargs["export_tax_rate"] = _decimal("taxes.export_tax_rate", data["export_tax_rate"])
    if "export_tax_modes" in data:
        modes = data["export_tax_modes"]
        if not isinstance(modes, list):
            raise SettingsError("taxes.export_tax_modes", "expected a list of transport modes")
        kwargs["export_tax_modes"] = tuple(str(m) for m in modes)
    try:
        return TaxSchedule(**kwargs)
    except ValueError as exc:
        raise SettingsError("taxes", str(exc)) from exc


def settings_from_dict(document: dict[str, Any]) -> EngineSettings:
    """Build settings from an already parsed document."""
    unknown = sorted(set(document) - {"control", "taxes"})
    if unknown:
        raise SettingsError(unknown[0], "unknown section")
    for section in ("control", "taxes"):
        if document.get(section) is not None and not isinstance(document[section], dict):
            raise SettingsError(section, "expected a mapping")
    return EngineSettings(
        control=_control(document.get("control") or {}),
        taxes=_taxes(document.get("taxes") or {}),
    )


def load_settings(path: Path | str | None = None) -> EngineSettings:
    """
    Load engine settings.

    Args:
        path: YAML settings file.  None returns the defaults.

    Raises:
        SettingsError: on unknown keys or invalid values.
        FileNotFoundError: if ``path`` does not exist.
    """
    if path is None:
        logger.debug("engine_settings_defaults")
        return EngineSettings()
    settings = settings_from_dict(load_yaml_file(Path(path)))
    logger.info(
        "engine_settings_loaded",
        extra={
            "path": str(path),
            "vat_countries": sorted(settings.taxes.vat_rates),
            "export_tax_rate": str(settings.taxes.export_tax_rate),
        },
    )
    return settings
