"""
RuleUsageService -- atomic pricing-rule usage bookkeeping.

Responsibility:
    Records that a pricing rule was applied to a confirmed quote by bumping
    ``usage_count`` and stamping ``last_used_at``.  Evaluation itself never
    touches these columns; the cost composer calls ``record_usage`` only
    after a composition succeeded.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - The increment is a single ``UPDATE ... SET usage_count = usage_count + 1``
      statement, so two concurrent quotes firing the same rule never lose
      a count to a read-modify-write race.
    - ``last_used_at`` only moves forward.

Failure modes:
    - PricingRuleNotFoundError when no row matches the rule id.

Non-goals:
    Does NOT call ``session.commit()`` -- the caller owns the transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from tariff_kernel.exceptions import PricingRuleNotFoundError
from tariff_kernel.logging_config import get_logger
from tariff_kernel.models.pricing_rule import PricingRuleModel

logger = get_logger("services.rule_usage")


class RuleUsageRecorder(Protocol):
    """Anything that can record a confirmed rule application."""

    def record_usage(self, rule_id: str, used_at: datetime) -> int:
        ...


class RuleUsageService:
    """SQL-backed RuleUsageRecorder."""

    def __init__(self, session: Session):
        self._session = session

    def record_usage(self, rule_id: str, used_at: datetime) -> int:
        """
        Atomically increment a rule's usage counter.

        Returns:
            The usage count after the increment.

        Raises:
            PricingRuleNotFoundError: If the rule does not exist.
        """
        pk = UUID(rule_id)
        result = self._session.execute(
            update(PricingRuleModel)
            .where(PricingRuleModel.id == pk)
            .values(
                usage_count=PricingRuleModel.usage_count + 1,
                last_used_at=case(
                    (PricingRuleModel.last_used_at.is_(None), used_at),
                    (PricingRuleModel.last_used_at < used_at, used_at),
                    else_=PricingRuleModel.last_used_at,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("rule_usage_rule_missing", extra={"rule_id": rule_id})
            raise PricingRuleNotFoundError(rule_id)

        count = self._session.execute(
            select(PricingRuleModel.usage_count).where(PricingRuleModel.id == pk)
        ).scalar_one()
        logger.debug(
            "rule_usage_recorded",
            extra={"rule_id": rule_id, "usage_count": count},
        )
        return count

    def usage_of(self, rule_id: str) -> tuple[int, datetime | None]:
        """Current (usage_count, last_used_at) of a rule."""
        row = self._session.execute(
            select(PricingRuleModel.usage_count, PricingRuleModel.last_used_at).where(
                PricingRuleModel.id == UUID(rule_id)
            )
        ).one_or_none()
        if row is None:
            raise PricingRuleNotFoundError(rule_id)
        return row.usage_count, row.last_used_at
