"""
PricingRuleRepository -- authored pricing rules in the database.

Responsibility:
    Persists pricing rules after compiling them (so a malformed rule never
    reaches the table) and loads active rules back as frozen PricingRule
    records for the cost composer, usage bookkeeping included.

Architecture position:
    Services -- imperative shell over PricingRuleModel and the
    tariff_config compiler.

Invariants enforced:
    - A rule is compiled before it is stored; the authoring payload is kept
      verbatim in ``definition`` (JSON-safe: numbers and dates as strings).
    - usage_count / last_used_at are never written here; only
      RuleUsageService moves them.

Non-goals:
    Does NOT call ``session.commit()`` -- the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from tariff_config.compiler import compile_pricing_rule
from tariff_kernel.domain.pricing_rules import PricingRule
from tariff_kernel.exceptions import PricingRuleNotFoundError
from tariff_kernel.logging_config import get_logger
from tariff_kernel.models.pricing_rule import PricingRuleModel

logger = get_logger("services.rule_repository")


def _json_safe(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class PricingRuleRepository:
    """Stores and loads compiled pricing rules."""

    def __init__(self, session: Session):
        self._session = session

    def add(self, payload: Mapping[str, Any], created_by_id: UUID) -> PricingRule:
        """
        Compile and store a rule.

        ``payload["id"]`` must be a UUID string; it becomes the row id.

        Raises:
            MalformedRuleDefinitionError: the payload does not compile.
        """
        rule = compile_pricing_rule(payload)
        model = PricingRuleModel(
            id=UUID(rule.id),
            name=rule.name,
            description=rule.description,
            rule_type=rule.rule_type.value,
            priority=rule.priority,
            is_active=rule.is_active,
            effective_date=rule.validity.effective_date,
            expiry_date=rule.validity.expiry_date,
            definition={
                "conditions": _json_safe(payload.get("conditions") or {}),
                "actions": _json_safe(payload.get("actions") or {}),
            },
            usage_count=0,
            created_by_id=created_by_id,
        )
        self._session.add(model)
        self._session.flush()
        logger.info(
            "pricing_rule_stored",
            extra={"rule_id": rule.id, "rule_type": rule.rule_type.value, "priority": rule.priority},
        )
        return rule

    def _to_rule(self, model: PricingRuleModel) -> PricingRule:
        payload: dict[str, Any] = {
            "id": str(model.id),
            "name": model.name,
            "description": model.description,
            "rule_type": model.rule_type,
            "priority": model.priority,
            "is_active": model.is_active,
            "effective_date": model.effective_date,
            "expiry_date": model.expiry_date,
            "conditions": model.definition.get("conditions") or {},
            "actions": model.definition.get("actions") or {},
        }
        return replace(
            compile_pricing_rule(payload),
            usage_count=model.usage_count,
            last_used_at=model.last_used_at,
        )

    def get(self, rule_id: str) -> PricingRule:
        model = self._session.get(PricingRuleModel, UUID(rule_id), populate_existing=True)
        if model is None:
            raise PricingRuleNotFoundError(rule_id)
        return self._to_rule(model)

    def list_active(self) -> list[PricingRule]:
        """Active rules, highest priority first."""
        models = self._session.execute(
            select(PricingRuleModel)
            .where(PricingRuleModel.is_active.is_(True))
            .order_by(PricingRuleModel.priority.desc(), PricingRuleModel.name)
        ).scalars()
        return [self._to_rule(m) for m in models]
