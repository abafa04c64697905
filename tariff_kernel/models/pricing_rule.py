"""
Module: tariff_kernel.models.pricing_rule
Responsibility: ORM persistence for pricing rule definitions and their usage
    bookkeeping.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - usage_count is never negative (check constraint) and only moves via
      an atomic ``usage_count = usage_count + 1`` UPDATE issued by
      RuleUsageService.
    - priority lies in [1, 100].

The authoring payload (conditions/actions mapping) is kept verbatim in
``definition`` and compiled into a frozen PricingRule by tariff_config.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from tariff_kernel.db.base import TrackedBase


class PricingRuleModel(TrackedBase):
    """Persistent pricing rule."""

    __tablename__ = "pricing_rules"

    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="ck_pricing_rules_usage_count"),
        CheckConstraint(
            "priority >= 1 AND priority <= 100", name="ck_pricing_rules_priority"
        ),
        CheckConstraint(
            "rule_type IN ('rate_selection', 'discount', 'surcharge', "
            "'validation', 'approval')",
            name="ck_pricing_rules_rule_type",
        ),
        Index("idx_pricing_rules_active_priority", "is_active", "priority"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    definition: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    usage_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<PricingRuleModel {self.name} p={self.priority} used={self.usage_count}>"
