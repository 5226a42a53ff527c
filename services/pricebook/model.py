from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from services.data_processing import non_negative, safe_float, to_bool


class CategoryType(str, Enum):
    SERVICE = "service"
    MATERIAL = "material"
    EQUIPMENT = "equipment"

    @classmethod
    def parse(cls, value, default: "CategoryType" = None) -> "CategoryType":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if text == member.value:
                return member
        return default or cls.SERVICE


class Priority(str, Enum):
    NORMAL = "normal"
    AFTER_HOURS = "after_hours"
    EMERGENCY = "emergency"

    @classmethod
    def parse(cls, value) -> "Priority":
        """
        'afterHours', 'after_hours', 'After-Hours' -> AFTER_HOURS. Blank means NORMAL.

        :raises ValueError: for any other value.
        """
        if isinstance(value, cls):
            return value
        text = re.sub(r"[^a-z]", "", str(value or "").lower())
        if not text:
            return cls.NORMAL
        for member in cls:
            if text == member.value.replace("_", ""):
                return member
        raise ValueError(f"Unknown priority '{value}'")


@dataclass(frozen=True)
class CategoryNode:
    id: str
    name: str
    parent_id: Optional[str]
    type: CategoryType
    path: Tuple[str, ...]               # ancestor names + own name
    level: int                          # root = 1
    description: str = ""
    active: bool = True
    price_rule_id: Optional[str] = None

    def to_document(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "parentId": self.parent_id,
            "type": self.type.value,
            "path": list(self.path),
            "level": self.level,
            "description": self.description,
            "active": self.active,
            "priceRuleId": self.price_rule_id,
        }

    @classmethod
    def from_document(cls, doc: Dict) -> "CategoryNode":
        path = tuple(doc.get("path") or (doc.get("name", ""),))
        return cls(
            id=str(doc["id"]),
            name=doc.get("name", ""),
            parent_id=doc.get("parentId") or None,
            type=CategoryType.parse(doc.get("type")),
            path=path,
            level=int(doc.get("level") or len(path) or 1),
            description=doc.get("description") or "",
            active=to_bool(doc.get("active"), default=True),
            price_rule_id=doc.get("priceRuleId") or None,
        )


@dataclass(frozen=True)
class MarkupTier:
    min: float
    max: Optional[float]                # None = open-ended top tier
    percent: float

    def contains(self, cost: float) -> bool:
        if cost < self.min:
            return False
        return self.max is None or cost < self.max

    def to_document(self) -> Dict:
        return {"min": self.min, "max": self.max, "percent": self.percent}

    @classmethod
    def from_document(cls, doc: Dict) -> "MarkupTier":
        upper = doc.get("max")
        return cls(
            min=safe_float(doc.get("min")),
            max=None if upper is None or upper == "" else safe_float(upper),
            percent=safe_float(doc.get("percent", doc.get("markup"))),
        )


DEFAULT_RULE = {
    "baseRate": 120.0,
    "afterHoursMultiplier": 1.5,
    "emergencyMultiplier": 2.0,
    "materialMarkup": 0.0,
    "laborMarkup": 0.0,
    "markupTiers": [
        {"min": 0, "max": 100, "percent": 25},
        {"min": 100, "max": 500, "percent": 15},
        {"min": 500, "max": None, "percent": 10},
    ],
}

# carried on the rule document, not used in the price computation
SURCHARGE_FIELDS = (
    "weekendSurcharge",
    "holidaySurcharge",
    "afterHoursSurcharge",
    "minimumCharge",
    "travelTime",
    "mileageRate",
)


@dataclass
class PriceRule:
    id: str
    name: str = ""
    description: str = ""
    base_rate: float = 0.0
    after_hours_multiplier: float = 1.0
    emergency_multiplier: float = 1.0
    material_markup: float = 0.0
    labor_markup: float = 0.0
    markup_tiers: List[MarkupTier] = field(default_factory=list)
    assigned_categories: List[str] = field(default_factory=list)
    assigned_services: List[str] = field(default_factory=list)
    active: bool = True
    surcharges: Dict[str, float] = field(default_factory=dict)

    def multiplier_for(self, priority: Priority) -> float:
        if priority == Priority.AFTER_HOURS:
            return self.after_hours_multiplier
        if priority == Priority.EMERGENCY:
            return self.emergency_multiplier
        return 1.0

    def to_document(self) -> Dict:
        doc = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "baseRate": self.base_rate,
            "afterHoursMultiplier": self.after_hours_multiplier,
            "emergencyMultiplier": self.emergency_multiplier,
            "materialMarkup": self.material_markup,
            "laborMarkup": self.labor_markup,
            "markupTiers": [tier.to_document() for tier in self.markup_tiers],
            "assignedCategories": list(self.assigned_categories),
            "assignedServices": list(self.assigned_services),
            "active": self.active,
        }
        doc.update(self.surcharges)
        return doc

    @classmethod
    def from_document(cls, doc: Dict, defaults: Optional[Dict] = None) -> "PriceRule":
        """
        Build a rule from a stored (camelCase) document.

        Keys missing from the document fall back to `defaults` (DEFAULT_RULE when None).
        Multipliers below 1 are raised to 1; rates and markups below 0 become 0.
        """
        base = dict(DEFAULT_RULE if defaults is None else defaults)
        base.update({k: v for k, v in doc.items() if v is not None})

        tiers = [MarkupTier.from_document(t) for t in base.get("markupTiers") or []]
        return cls(
            id=str(doc.get("id", "")),
            name=base.get("name") or "",
            description=base.get("description") or "",
            base_rate=non_negative(base.get("baseRate")),
            after_hours_multiplier=max(safe_float(base.get("afterHoursMultiplier")), 1.0),
            emergency_multiplier=max(safe_float(base.get("emergencyMultiplier")), 1.0),
            material_markup=non_negative(base.get("materialMarkup")),
            labor_markup=non_negative(base.get("laborMarkup")),
            markup_tiers=tiers,
            assigned_categories=[str(c) for c in base.get("assignedCategories") or []],
            assigned_services=[str(s) for s in base.get("assignedServices") or []],
            active=to_bool(base.get("active"), default=True),
            surcharges={key: non_negative(base.get(key)) for key in SURCHARGE_FIELDS if key in base},
        )


@dataclass(frozen=True)
class Material:
    id: str
    name: str = ""
    code: str = ""
    cost: float = 0.0
    price: float = 0.0
    unit: str = ""
    categories: Tuple[str, ...] = ()
    active: bool = True
    taxable: bool = False

    @classmethod
    def from_document(cls, doc: Dict) -> "Material":
        return cls(
            id=str(doc["id"]),
            name=doc.get("name") or "",
            code=doc.get("code") or "",
            cost=non_negative(doc.get("cost")),
            price=non_negative(doc.get("price")),
            unit=doc.get("unit") or "",
            categories=tuple(str(c) for c in doc.get("categories") or []),
            active=to_bool(doc.get("active"), default=True),
            taxable=to_bool(doc.get("taxable")),
        )


@dataclass(frozen=True)
class Service:
    id: str
    name: str = ""
    categories: Tuple[str, ...] = ()
    hours: float = 0.0
    static_price: float = 0.0
    use_dynamic_pricing: bool = False
    linked_materials: Tuple[str, ...] = ()

    @classmethod
    def from_document(cls, doc: Dict) -> "Service":
        static = doc.get("staticPrice")
        if static is None or static == "":
            static = doc.get("price")
        return cls(
            id=str(doc["id"]),
            name=doc.get("name") or "",
            categories=tuple(str(c) for c in doc.get("categories") or []),
            hours=non_negative(doc.get("hours")),
            static_price=non_negative(static),
            use_dynamic_pricing=to_bool(doc.get("useDynamicPricing")),
            linked_materials=tuple(str(m) for m in doc.get("materials") or doc.get("linkedMaterials") or []),
        )

