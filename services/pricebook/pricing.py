"""
Price resolution for catalog services.

A service priced dynamically picks the first active rule that applies to it:

1. a rule that lists the service id in ``assigned_services``;
2. a rule whose ``assigned_categories`` shares a category with the service;
3. a rule named by the ``price_rule_id`` of one of the service's categories.

With no rule (or ``use_dynamic_pricing`` off) the service keeps its static price.

Dynamic price::

    labor            = base_rate * priority multiplier * hours
    materials        = sum of linked material costs
    material markup  = tiered: materials * tier% then material_markup% on the marked-up materials
                       flat:   materials * material_markup%
    labor markup     = labor * labor_markup%
    total            = labor + labor markup + materials + material markup   (cents, half-up)

Tiers are checked in list order and the first one whose [min, max) holds the cost wins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from services.data_processing import non_negative
from .model import CategoryNode, MarkupTier, Material, PriceRule, Priority, Service


logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")


class MarkupMode(str, Enum):
    TIERED = "tiered"
    FLAT = "flat"


class PriceSource(str, Enum):
    RULE = "rule"
    STATIC = "static"


def _dec(value) -> Decimal:
    return Decimal(str(non_negative(value)))


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    source: PriceSource
    total: Decimal
    rule_id: Optional[str] = None
    priority: Priority = Priority.NORMAL
    markup_mode: Optional[MarkupMode] = None
    labor: Decimal = Decimal("0")
    labor_markup: Decimal = Decimal("0")
    materials: Decimal = Decimal("0")
    material_markup: Decimal = Decimal("0")
    tier_percent: Decimal = Decimal("0")

    def to_dict(self) -> Dict:
        return {
            "source": self.source.value,
            "ruleId": self.rule_id,
            "priority": self.priority.value,
            "markupMode": self.markup_mode.value if self.markup_mode else None,
            "labor": float(to_cents(self.labor)),
            "laborMarkup": float(to_cents(self.labor_markup)),
            "materials": float(to_cents(self.materials)),
            "materialMarkup": float(to_cents(self.material_markup)),
            "tierPercent": float(self.tier_percent),
            "total": float(self.total),
        }


def tiered_markup_percent(cost, tiers: Sequence[MarkupTier]) -> Decimal:
    """Percent of the first tier (list order) containing `cost`; 0 when none does."""
    amount = non_negative(cost)
    for tier in tiers:
        if tier.contains(amount):
            return Decimal(str(tier.percent))
    return Decimal("0")


def tiered_material_markup(materials_cost, rule: PriceRule) -> Decimal:
    """Tier markup on the materials, then material_markup% on the tier-marked-up amount. Returns the markup only."""
    cost = _dec(materials_cost)
    tier_amount = cost * tiered_markup_percent(cost, rule.markup_tiers) / HUNDRED
    flat_amount = (cost + tier_amount) * _dec(rule.material_markup) / HUNDRED
    return tier_amount + flat_amount


def flat_material_markup(material_costs: Iterable, rule: PriceRule) -> Decimal:
    """Each material times material_markup%, tiers ignored. Returns the markup only."""
    rate = _dec(rule.material_markup) / HUNDRED
    return sum((_dec(cost) * rate for cost in material_costs), Decimal("0"))


def calculate_total(rule: PriceRule, hours, material_costs: Sequence = (),
                    priority: Priority = Priority.NORMAL,
                    markup_mode: MarkupMode = MarkupMode.TIERED) -> PriceBreakdown:
    """Price one job against one rule."""
    priority = Priority.parse(priority)
    markup_mode = MarkupMode(markup_mode)

    multiplier = Decimal(str(rule.multiplier_for(priority)))
    labor = _dec(rule.base_rate) * multiplier * _dec(hours)
    labor_markup = labor * _dec(rule.labor_markup) / HUNDRED

    costs = [_dec(c) for c in material_costs]
    materials = sum(costs, Decimal("0"))
    if markup_mode == MarkupMode.TIERED:
        tier_percent = tiered_markup_percent(materials, rule.markup_tiers)
        material_markup = tiered_material_markup(materials, rule)
    else:
        tier_percent = Decimal("0")
        material_markup = flat_material_markup(costs, rule)

    total = to_cents(labor + labor_markup + materials + material_markup)
    return PriceBreakdown(
        source=PriceSource.RULE,
        total=total,
        rule_id=rule.id or None,
        priority=priority,
        markup_mode=markup_mode,
        labor=labor,
        labor_markup=labor_markup,
        materials=materials,
        material_markup=material_markup,
        tier_percent=tier_percent,
    )


def resolve_rule(service: Service, rules: Iterable[PriceRule],
                 categories: Optional[Mapping[str, CategoryNode]] = None) -> Optional[PriceRule]:
    """
    First applicable active rule for `service`, or None.

    When `categories` is given, category ids it does not know are ignored.
    """
    active = [rule for rule in rules if rule.active]

    for rule in active:
        if service.id in rule.assigned_services:
            return rule

    category_ids = list(service.categories)
    if categories is not None:
        category_ids = [c for c in category_ids if c in categories]
    if not category_ids:
        return None

    for rule in active:
        if set(rule.assigned_categories).intersection(category_ids):
            return rule

    if categories is not None:
        by_id = {rule.id: rule for rule in active}
        for category_id in category_ids:
            rule_id = categories[category_id].price_rule_id
            if rule_id and rule_id in by_id:
                return by_id[rule_id]

    return None


def static_price(service: Service) -> PriceBreakdown:
    return PriceBreakdown(source=PriceSource.STATIC, total=to_cents(_dec(service.static_price)))


def calculate_price(service: Service, rules: Iterable[PriceRule],
                    materials: Optional[Mapping[str, Material]] = None,
                    categories: Optional[Mapping[str, CategoryNode]] = None,
                    priority: Priority = Priority.NORMAL,
                    markup_mode: MarkupMode = MarkupMode.TIERED) -> PriceBreakdown:
    """Displayed price of a service; never raises for missing rules or materials."""
    if not service.use_dynamic_pricing:
        return static_price(service)

    rule = resolve_rule(service, rules, categories)
    if rule is None:
        logger.debug(f"No price rule applies to service {service.id}; using static price")
        return static_price(service)

    materials = materials or {}
    costs = []
    for material_id in service.linked_materials:
        material = materials.get(material_id)
        if material is None:
            logger.debug(f"Service {service.id} links unknown material {material_id}")
            continue
        costs.append(material.cost)

    return calculate_total(rule, service.hours, costs, priority, markup_mode)


def validate_markup_tiers(tiers: Sequence[MarkupTier]) -> List[str]:
    """
    Human-readable warnings about a tier list. Nothing here changes how tiers are applied:
    the first matching tier in list order still wins.
    """
    warnings = []

    for position, tier in enumerate(tiers, start=1):
        if tier.max is not None and tier.max <= tier.min:
            warnings.append(f"Tier {position}: max ({tier.max:g}) must be greater than min ({tier.min:g})")

    open_ended = [position for position, tier in enumerate(tiers, start=1) if tier.max is None]
    if len(open_ended) > 1:
        warnings.append(f"Tiers {', '.join(map(str, open_ended))} are all open-ended; only the first can ever match")

    ordered = sorted(tiers, key=lambda t: t.min)
    if list(ordered) != list(tiers):
        warnings.append("Tiers are not in ascending order; the first matching tier in list order wins")

    if ordered and ordered[0].min > 0:
        warnings.append(f"Costs below {ordered[0].min:g} match no tier")

    for lower, upper in zip(ordered, ordered[1:]):
        if lower.max is None or lower.max > upper.min:
            warnings.append(f"Tiers starting at {lower.min:g} and {upper.min:g} overlap")
        elif lower.max < upper.min:
            warnings.append(f"Costs from {lower.max:g} to {upper.min:g} match no tier")

    if ordered and all(t.max is not None for t in ordered):
        top = max(t.max for t in ordered)
        warnings.append(f"No open-ended tier; costs of {top:g} and above match no tier")

    return warnings
