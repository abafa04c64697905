"""
CostComposer -- expected cost of a shipment.

Responsibility:
    Orchestrates the rate catalog, surcharge engine and pricing rule
    engine into one auditable quote: base cost of the best rate term,
    every applicable surcharge, every matched rule's actions folded in
    priority order, and optionally the tax lines.  Also compares transport
    options and estimates transit times.

Architecture position:
    Services -- orchestration over pure engines.  The only clock read of a
    composition happens here; engines receive the moment as ``now``.

Invariants enforced:
    - Rate adjustments fold cumulatively in rule priority order, then
      authored order.  ``base_rate`` adjustments work on the running base,
      ``total_cost`` adjustments on the running total, ``specific_service``
      adjustments only when the shipment's service type matches.
    - Catalog surcharges are computed against the unadjusted base cost;
      zero results are left out of the breakdown.
    - A ``block_quote`` validation action aborts the composition.  Nothing
      is recorded for a blocked quote.
    - Rule usage is recorded once per matched rule, only after the quote
      was produced.
    - Only the quote totals are rounded (2 dp, half up); breakdown entries
      keep full precision.

Failure modes:
    - NoApplicableRateError: no active rate term applies.
    - QuotingBlockedError: a matched rule vetoed the quote.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from tariff_engines import pricing_rules, rate_catalog
from tariff_engines import surcharges as surcharge_engine
from tariff_engines.taxes import TaxLine, calculate_taxes
from tariff_kernel.domain.clock import Clock, SystemClock
from tariff_kernel.domain.control import TaxSchedule
from tariff_kernel.domain.pricing_rules import (
    ActionCategory,
    ActionResult,
    AddSurcharge,
    AppliesTo,
    ModifySurcharge,
    PricingRule,
    RateAdjustment,
    RemoveSurcharge,
    RuleEvaluation,
    ValidationAction,
    ValidationKind,
)
from tariff_kernel.domain.rates import RateTerm
from tariff_kernel.domain.shipment import ShipmentContext
from tariff_kernel.domain.surcharges import Surcharge
from tariff_kernel.exceptions import NoApplicableRateError, QuotingBlockedError
from tariff_kernel.logging_config import LogContext, get_logger
from tariff_kernel.services.rule_usage_service import RuleUsageRecorder

logger = get_logger("services.cost_composer")

ZERO = Decimal("0")
CENT = Decimal("0.01")

CATALOG = "catalog"
RULE = "rule"


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# Quote records
# =============================================================================


@dataclass(frozen=True)
class SurchargeCharge:
    """One surcharge line of a quote, from the catalog or added by a rule."""

    name: str
    amount: Decimal
    calculation_method: str
    surcharge_id: str | None = None
    surcharge_type: str | None = None
    source: str = CATALOG
    rule_id: str | None = None

    def matches(self, surcharge_id: str | None, surcharge_name: str | None) -> bool:
        if surcharge_id is not None:
            return self.surcharge_id == surcharge_id
        return self.name == surcharge_name


@dataclass(frozen=True)
class RuleAdjustmentLine:
    """Effect of one rule action on the quote (``amount`` is the delta)."""

    rule_id: str
    rule_name: str
    action: str
    amount: Decimal
    applies_to: str | None = None
    value: Decimal | None = None
    surcharge_name: str | None = None


@dataclass(frozen=True)
class CostBreakdown:
    base_cost: Decimal
    rate_term_id: str
    rate_term_name: str
    adjusted_base: Decimal
    surcharges: tuple[SurchargeCharge, ...] = ()
    adjustments: tuple[RuleAdjustmentLine, ...] = ()
    taxes: tuple[TaxLine, ...] = ()

    @property
    def surcharge_total(self) -> Decimal:
        return sum((s.amount for s in self.surcharges), ZERO)

    @property
    def tax_total(self) -> Decimal:
        return sum((t.amount for t in self.taxes), ZERO)


@dataclass(frozen=True)
class CostQuote:
    """
    Composed cost of a shipment.

    ``subtotal`` is before taxes, ``total`` after; both rounded to cents.
    """

    shipment_id: str | None
    total: Decimal
    subtotal: Decimal
    currency: str
    breakdown: CostBreakdown
    calculated_at: datetime
    requires_approval: bool = False
    approval_levels: tuple[str, ...] = ()
    auto_approved: bool = False
    warnings: tuple[str, ...] = ()
    applied_rule_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransitEstimate:
    transport_mode: str
    hours: int
    days: int
    estimated_delivery: datetime


@dataclass(frozen=True)
class TransportOption:
    rate_term_id: str
    rate_term_name: str
    transport_mode: str
    quote: CostQuote
    transit: TransitEstimate


@dataclass(frozen=True)
class TransportComparison:
    """Options sorted by ascending total; ``savings`` is max minus min total."""

    options: tuple[TransportOption, ...]
    recommended: TransportOption
    savings: Decimal


# =============================================================================
# Transit time
# =============================================================================

MODE_SPEED_KMH: dict[str, Decimal] = {
    "road": Decimal("80"),
    "rail": Decimal("60"),
    "sea": Decimal("25"),
    "air": Decimal("800"),
    "multimodal": Decimal("50"),
}
MODE_HANDLING_HOURS: dict[str, Decimal] = {
    "road": Decimal("4"),
    "rail": Decimal("8"),
    "sea": Decimal("24"),
    "air": Decimal("6"),
    "multimodal": Decimal("12"),
}
DEFAULT_SPEED_KMH = Decimal("50")
DEFAULT_HANDLING_HOURS = Decimal("8")


def estimate_transit_time(
    transport_mode: str,
    distance: Decimal,
    departure: datetime,
) -> TransitEstimate:
    """Driving time at the mode's average speed plus loading/unloading time."""
    speed = MODE_SPEED_KMH.get(transport_mode, DEFAULT_SPEED_KMH)
    handling = MODE_HANDLING_HOURS.get(transport_mode, DEFAULT_HANDLING_HOURS)
    total_hours = distance / speed + handling
    return TransitEstimate(
        transport_mode=transport_mode,
        hours=int(total_hours.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
        days=math.ceil(total_hours / Decimal("24")),
        estimated_delivery=departure + timedelta(hours=float(total_hours)),
    )


# =============================================================================
# Composition
# =============================================================================


@dataclass
class _RunningQuote:
    """Mutable accumulator local to one composition."""

    base: Decimal
    charges: list[SurchargeCharge] = field(default_factory=list)
    total_adjustment: Decimal = ZERO
    adjustments: list[RuleAdjustmentLine] = field(default_factory=list)
    requires_approval: bool = False
    approval_levels: list[str] = field(default_factory=list)
    auto_approved: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return self.base + sum((c.amount for c in self.charges), ZERO) + self.total_adjustment


class CostComposer:
    """
    Composes shipment quotes.

    Contract:
        Receives a Clock and, optionally, a RuleUsageRecorder via
        constructor injection.  Catalog records are passed per call and
        never mutated.
    Guarantees:
        - ``compose_cost`` returns a CostQuote or raises; it records usage
          only for a returned quote.
        - ``compare_options`` never records usage.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        usage_recorder: RuleUsageRecorder | None = None,
        tax_schedule: TaxSchedule | None = None,
    ):
        self._clock = clock or SystemClock()
        self._usage_recorder = usage_recorder
        self._tax_schedule = tax_schedule or TaxSchedule()

    def compose_cost(
        self,
        ctx: ShipmentContext,
        rate_terms: list[RateTerm] | tuple[RateTerm, ...],
        surcharges: list[Surcharge] | tuple[Surcharge, ...] = (),
        rules: list[PricingRule] | tuple[PricingRule, ...] = (),
        include_taxes: bool = False,
    ) -> CostQuote:
        """
        Expected cost of ``ctx``.

        Raises:
            NoApplicableRateError: nothing in ``rate_terms`` applies.
            QuotingBlockedError: a matched rule carries ``block_quote``.
        """
        with LogContext.bind(shipment_id=ctx.shipment_id):
            now = self._clock.now()
            term = rate_catalog.select_best_term(rate_terms, ctx)
            if term is None:
                logger.warning(
                    "quote_no_applicable_rate",
                    extra={"candidates": len(rate_terms)},
                )
                raise NoApplicableRateError(ctx.shipment_id, len(rate_terms))

            quote = self._compose_with_term(
                ctx, term, surcharges, rules, include_taxes, now
            )

            if self._usage_recorder is not None:
                for rule_id in quote.applied_rule_ids:
                    self._usage_recorder.record_usage(rule_id, now)

            logger.info(
                "quote_composed",
                extra={
                    "rate_term_id": term.id,
                    "total": str(quote.total),
                    "surcharges": len(quote.breakdown.surcharges),
                    "adjustments": len(quote.breakdown.adjustments),
                    "requires_approval": quote.requires_approval,
                    "applied_rule_ids": list(quote.applied_rule_ids),
                },
            )
            return quote

    def compare_options(
        self,
        ctx: ShipmentContext,
        rate_terms: list[RateTerm] | tuple[RateTerm, ...],
        surcharges: list[Surcharge] | tuple[Surcharge, ...] = (),
        rules: list[PricingRule] | tuple[PricingRule, ...] = (),
        modes: tuple[str, ...] | None = None,
        include_taxes: bool = True,
    ) -> TransportComparison:
        """
        One quote per applicable rate term, cheapest first.

        Args:
            modes: Transport modes to try.  Defaults to the shipment's own
                mode.  A term without a mode is quoted once per mode.

        Raises:
            NoApplicableRateError: no term applies under any mode.
            QuotingBlockedError: a matched rule vetoed an option.
        """
        now = self._clock.now()
        contexts = [ctx] if not modes else [replace(ctx, transport_mode=m) for m in modes]

        options: list[TransportOption] = []
        for option_ctx in contexts:
            for term in rate_catalog.applicable_terms(rate_terms, option_ctx):
                quote = self._compose_with_term(
                    option_ctx, term, surcharges, rules, include_taxes, now
                )
                mode = term.transport_mode or option_ctx.transport_mode
                options.append(
                    TransportOption(
                        rate_term_id=term.id,
                        rate_term_name=term.name,
                        transport_mode=mode,
                        quote=quote,
                        transit=estimate_transit_time(mode, ctx.distance, ctx.shipment_date),
                    )
                )

        if not options:
            logger.warning(
                "transport_comparison_empty",
                extra={"shipment_id": ctx.shipment_id, "modes": list(modes or ())},
            )
            raise NoApplicableRateError(ctx.shipment_id, len(rate_terms))

        options.sort(key=lambda o: o.quote.total)
        comparison = TransportComparison(
            options=tuple(options),
            recommended=options[0],
            savings=options[-1].quote.total - options[0].quote.total,
        )
        logger.info(
            "transport_options_compared",
            extra={
                "shipment_id": ctx.shipment_id,
                "options": len(options),
                "recommended_rate_term_id": comparison.recommended.rate_term_id,
                "savings": str(comparison.savings),
            },
        )
        return comparison

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _compose_with_term(
        self,
        ctx: ShipmentContext,
        term: RateTerm,
        surcharges,
        rules,
        include_taxes: bool,
        now: datetime,
    ) -> CostQuote:
        quantity = rate_catalog.quantity_for_rate_type(term.rate_type, ctx)
        base_cost = rate_catalog.price(term, quantity, ctx, base_amount=ctx.value)
        running = _RunningQuote(base=base_cost)

        for surcharge in surcharge_engine.applicable_surcharges(surcharges, ctx):
            amount = surcharge_engine.compute(surcharge, base_cost, ctx)
            if amount == ZERO:
                continue
            running.charges.append(
                SurchargeCharge(
                    name=surcharge.name,
                    amount=amount,
                    calculation_method=surcharge.calculation_method,
                    surcharge_id=surcharge.id,
                    surcharge_type=surcharge.surcharge_type,
                )
            )

        evaluations = pricing_rules.evaluate_rules(rules, ctx, now)
        for evaluation in evaluations:
            for result in evaluation.actions:
                self._apply_action(running, evaluation, result, ctx)

        subtotal = running.total
        taxes: tuple[TaxLine, ...] = ()
        if include_taxes:
            taxes = calculate_taxes(subtotal, ctx, self._tax_schedule)
        total = subtotal + sum((t.amount for t in taxes), ZERO)

        breakdown = CostBreakdown(
            base_cost=base_cost,
            rate_term_id=term.id,
            rate_term_name=term.name,
            adjusted_base=running.base,
            surcharges=tuple(running.charges),
            adjustments=tuple(running.adjustments),
            taxes=taxes,
        )
        return CostQuote(
            shipment_id=ctx.shipment_id,
            total=quantize_money(total),
            subtotal=quantize_money(subtotal),
            currency=term.currency,
            breakdown=breakdown,
            calculated_at=now,
            requires_approval=running.requires_approval,
            approval_levels=tuple(running.approval_levels),
            auto_approved=running.auto_approved,
            warnings=tuple(running.warnings),
            applied_rule_ids=tuple(e.rule_id for e in evaluations),
        )

    def _apply_action(
        self,
        running: _RunningQuote,
        evaluation: RuleEvaluation,
        result: ActionResult,
        ctx: ShipmentContext,
    ) -> None:
        if result.category == ActionCategory.RATE_ADJUSTMENT:
            self._apply_rate_adjustment(running, evaluation, result.action, ctx)
        elif result.category == ActionCategory.SURCHARGE_ACTION:
            self._apply_surcharge_action(running, evaluation, result.action, ctx)
        else:
            self._apply_validation(running, evaluation, result.action)

    def _apply_rate_adjustment(
        self,
        running: _RunningQuote,
        evaluation: RuleEvaluation,
        adjustment: RateAdjustment,
        ctx: ShipmentContext,
    ) -> None:
        if adjustment.applies_to == AppliesTo.SPECIFIC_SERVICE:
            if ctx.service_type != adjustment.service_type:
                return
            delta = pricing_rules.apply_rate_adjustment(running.total, adjustment)
            running.total_adjustment += delta
        elif adjustment.applies_to == AppliesTo.BASE_RATE:
            delta = pricing_rules.apply_rate_adjustment(running.base, adjustment)
            running.base += delta
        else:
            delta = pricing_rules.apply_rate_adjustment(running.total, adjustment)
            running.total_adjustment += delta

        running.adjustments.append(
            RuleAdjustmentLine(
                rule_id=evaluation.rule_id,
                rule_name=evaluation.rule_name,
                action=adjustment.kind,
                amount=delta,
                applies_to=adjustment.applies_to.value,
                value=adjustment.value,
            )
        )

    def _apply_surcharge_action(
        self,
        running: _RunningQuote,
        evaluation: RuleEvaluation,
        action: AddSurcharge | RemoveSurcharge | ModifySurcharge,
        ctx: ShipmentContext,
    ) -> None:
        if isinstance(action, AddSurcharge):
            amount = surcharge_engine.apply_method(action.calculation_method, action.value, running.base, ctx)
            running.charges.append(
                SurchargeCharge(
                    name=action.surcharge_name,
                    amount=amount,
                    calculation_method=action.calculation_method,
                    surcharge_id=action.surcharge_id,
                    source=RULE,
                    rule_id=evaluation.rule_id,
                )
            )
            delta = amount
            name = action.surcharge_name
        elif isinstance(action, RemoveSurcharge):
            kept = [c for c in running.charges if not c.matches(action.surcharge_id, action.surcharge_name)]
            removed = [c for c in running.charges if c.matches(action.surcharge_id, action.surcharge_name)]
            running.charges = kept
            delta = -sum((c.amount for c in removed), ZERO)
            name = action.surcharge_name or action.surcharge_id
        else:
            delta = ZERO
            updated: list[SurchargeCharge] = []
            for charge in running.charges:
                if charge.matches(action.surcharge_id, action.surcharge_name):
                    method = action.calculation_method or charge.calculation_method
                    amount = surcharge_engine.apply_method(method, action.value, running.base, ctx)
                    delta += amount - charge.amount
                    charge = replace(charge, amount=amount, calculation_method=method)
                updated.append(charge)
            running.charges = updated
            name = action.surcharge_name or action.surcharge_id

        running.adjustments.append(
            RuleAdjustmentLine(
                rule_id=evaluation.rule_id,
                rule_name=evaluation.rule_name,
                action=action.kind,
                amount=delta,
                value=getattr(action, "value", None),
                surcharge_name=name,
            )
        )

    def _apply_validation(
        self,
        running: _RunningQuote,
        evaluation: RuleEvaluation,
        action: ValidationAction,
    ) -> None:
        kind = action.validation_type
        if kind == ValidationKind.BLOCK_QUOTE:
            reason = action.message or "quote blocked by pricing rule"
            logger.warning(
                "quote_blocked",
                extra={"rule_id": evaluation.rule_id, "reason": reason},
            )
            raise QuotingBlockedError(evaluation.rule_id, evaluation.rule_name, reason)
        if kind == ValidationKind.REQUIRE_APPROVAL:
            running.requires_approval = True
            if action.approval_level:
                running.approval_levels.append(action.approval_level)
        elif kind == ValidationKind.WARNING_MESSAGE:
            running.warnings.append(action.message or evaluation.rule_name)
        elif kind == ValidationKind.AUTO_APPROVE:
            running.auto_approved = True
