from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from services.data_processing import cell_text


logger = logging.getLogger(__name__)

DESTINATION_SCHEMA_VERSION = 1

# Tokens dropped during normalization, each with an optional single trailing separator.
DOMAIN_PREFIXES = ("category", "service", "material", "equipment", "variant", "recommendations")
_PREFIX_RES = [re.compile(rf"{token}[ ._-]?") for token in DOMAIN_PREFIXES]
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def to_camel_case(text: str) -> str:
    """'Static Add-On Price' -> 'staticAddOnPrice', 'Category 1' -> 'category1'."""
    text = re.sub(r"^[^a-zA-Z0-9]+|[^a-zA-Z0-9]+$", "", text)
    text = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
    text = re.sub(r"[^a-zA-Z0-9]+(.)", lambda m: m.group(1).upper(), text)
    return re.sub(r"^[A-Z]", lambda m: m.group(0).lower(), text)


class DestinationField(str, Enum):
    """Canonical import fields, in schema order (the order matters for matching)."""
    NAME = "Name"
    PRICE = "Price"
    CATEGORY_ID = "Category ID"
    ID = "Id"
    CATEGORY_1 = "Category 1"
    CATEGORY_2 = "Category 2"
    CATEGORY_3 = "Category 3"
    CATEGORY_4 = "Category 4"
    CATEGORY_5 = "Category 5"
    CATEGORY_6 = "Category 6"
    CATEGORY_7 = "Category 7"
    CATEGORY_8 = "Category 8"
    CATEGORY_9 = "Category 9"
    CATEGORY_10 = "Category 10"
    CODE = "Code"
    DESCRIPTION = "Description"
    ITEM_DESCRIPTION = "Item Description"
    WARRANTY_DESCRIPTION = "Warranty Description"
    COST = "Cost"
    ESTIMATED_LABOR_COST = "Estimated Labor Cost"
    UNIT = "Unit"
    TAXABLE = "Taxable"
    ACTIVE = "Active"
    ALLOW_DISCOUNTS = "Allow Discounts"
    ALLOW_MEMBERSHIP_DISCOUNTS = "Allow Membership Discounts"
    LABOR_SERVICE = "Labor Service"
    EXCLUDE_FROM_PRICEBOOK_WIZARD = "Exclude From Pricebook Wizard"
    USE_DYNAMIC_PRICING = "Use Dynamic Pricing"
    STATIC_PRICE = "Static Price"
    STATIC_MEMBER_PRICE = "Static Member Price"
    STATIC_ADD_ON_PRICE = "Static Add-On Price"
    STATIC_MEMBER_ADD_ON_PRICE = "Static Member Add-On Price"
    CROSS_SALE_GROUP = "Cross Sale Group"
    GENERAL_LEDGER_ACCOUNT = "General Ledger Account"
    EXPENSE_ACCOUNT = "Expense Account"
    COMMISSION_PERCENTAGE = "Commission Percentage"
    BONUS_PERCENTAGE = "Bonus Percentage"
    PAY_TECH_SPECIFIC_BONUS = "Pay Tech Specific Bonus"
    PAYS_COMMISSION = "Pays Commission"
    TAGS = "Tags"
    HOURS = "hours"

    @property
    def label(self) -> str:
        return self.value

    @property
    def document_key(self) -> str:
        return to_camel_case(self.value)

    @classmethod
    def from_label(cls, label) -> Optional["DestinationField"]:
        text = cell_text(label)
        for member in cls:
            if member.value == text or member.name == text:
                return member
        return None


CATEGORY_LEVEL_FIELDS = tuple(DestinationField[f"CATEGORY_{n}"] for n in range(1, 11))

# Raw spellings; they are normalized when the lookup is built.
FIELD_SYNONYMS: Dict[DestinationField, List[str]] = {
    DestinationField.NAME: ["name", "itemname", "servicename", "materialname", "categoryname", "variantname", "alias"],
    DestinationField.CODE: ["code", "itemcode", "servicecode", "materialcode", "categorycode", "variantcode",
                            "sku", "skuid", "skucode"],
    DestinationField.DESCRIPTION: ["description", "desc", "itemdescription", "servicedescription",
                                   "materialdescription", "warrantydescription"],
    DestinationField.PRICE: ["price", "amount", "staticprice", "dynamicprice", "priceruleid", "pricerulename",
                             "memberprice", "addonprice", "addonmemberprice"],
    DestinationField.ID: ["itemid"],
    DestinationField.CATEGORY_ID: ["id", "serviceid", "materialid", "categoryid", "variantid",
                                   "externalid", "catid"],
    DestinationField.HOURS: ["hours", "laborhours", "time"],
    DestinationField.COST: ["cost", "costofsaleaccount", "materialcost"],
    DestinationField.UNIT: ["unit", "unitofmeasure", "uom"],
    DestinationField.ACTIVE: ["active"],
    DestinationField.TAXABLE: ["taxable"],
    DestinationField.BONUS_PERCENTAGE: ["bonus", "bonuspct", "bonusdollar", "bonusdollars", "bonusamount",
                                        "%bonus", "$bonus"],
    DestinationField.COMMISSION_PERCENTAGE: ["commission", "commissionpct"],
    DestinationField.PAY_TECH_SPECIFIC_BONUS: ["paytechspecificbonus"],
    DestinationField.ALLOW_DISCOUNTS: ["allowdiscounts"],
    DestinationField.ALLOW_MEMBERSHIP_DISCOUNTS: ["allowmembershipdiscounts"],
    DestinationField.LABOR_SERVICE: ["laborservice", "islabor"],
    DestinationField.EXCLUDE_FROM_PRICEBOOK_WIZARD: ["exclude", "excludefrompricebookwizard"],
    DestinationField.CROSS_SALE_GROUP: ["crosssale", "crosssalegroup"],
    DestinationField.GENERAL_LEDGER_ACCOUNT: ["generalledger", "generalledgeraccount", "glaccount"],
    DestinationField.EXPENSE_ACCOUNT: ["expense", "expenseaccount"],
    DestinationField.TAGS: ["tags"],
    DestinationField.ESTIMATED_LABOR_COST: ["estimatedlaborcost"],
}


def normalize_field(header) -> str:
    """
    Lowercase, drop the domain prefix tokens wherever they occur, then strip every
    remaining non-alphanumeric character.

    'Service Name' -> 'name', 'Category_ID' -> 'id', 'SKU #' -> 'sku'
    """
    text = cell_text(header).lower()
    for pattern in _PREFIX_RES:
        text = pattern.sub("", text)
    return _NON_ALNUM_RE.sub("", text)


class FieldAutoMapper:
    """
    Propose a destination field for each incoming header.

    Precedence per header, first hit wins:
      1. header equal to a destination label, ignoring case,
      2. exact normalized match (first destination in schema order),
      3. synonym table,
      4. prefix match in either direction,
      5. unmapped (None).

    Headers are matched independently, so two headers can be proposed the same field;
    FieldMappingSession resolves that.
    """

    def __init__(self, destination: Optional[Sequence[DestinationField]] = None,
                 synonyms: Optional[Mapping[DestinationField, Iterable[str]]] = None):
        self.destination = list(destination) if destination is not None else list(DestinationField)
        self._normalized = [(normalize_field(d.value), d) for d in self.destination]

        self._synonyms: Dict[str, DestinationField] = {}
        table = FIELD_SYNONYMS if synonyms is None else synonyms
        # walk in schema order so the earliest destination keeps a shared synonym
        for dest in self.destination:
            for spelling in table.get(dest, ()):
                self._synonyms.setdefault(normalize_field(spelling), dest)

    @classmethod
    def from_settings(cls, settings: Optional[Mapping] = None) -> "FieldAutoMapper":
        """
        Build a mapper from the `pricebook` config section.

        `field_synonyms` adds spellings per destination label; unknown labels are logged and ignored.
        """
        settings = settings or {}
        version = settings.get("destination_schema_version", DESTINATION_SCHEMA_VERSION)
        if version != DESTINATION_SCHEMA_VERSION:
            logger.warning(f"Config destination schema version {version} differs from "
                           f"{DESTINATION_SCHEMA_VERSION}; extra synonyms may not line up")

        synonyms = {dest: list(spellings) for dest, spellings in FIELD_SYNONYMS.items()}
        for label, spellings in (settings.get("field_synonyms") or {}).items():
            dest = DestinationField.from_label(label)
            if dest is None:
                logger.warning(f"Ignoring synonyms for unknown destination field '{label}'")
                continue
            synonyms.setdefault(dest, []).extend(spellings)
        return cls(synonyms=synonyms)

    def match(self, header) -> Optional[DestinationField]:
        text = cell_text(header).lower()
        for dest in self.destination:
            if text == dest.value.lower():
                return dest

        normalized = normalize_field(header)
        if not normalized:
            return None

        for dest_norm, dest in self._normalized:
            if normalized == dest_norm:
                return dest

        if normalized in self._synonyms:
            return self._synonyms[normalized]

        for dest_norm, dest in self._normalized:
            if normalized.startswith(dest_norm) or dest_norm.startswith(normalized):
                return dest

        return None

    def automap(self, headers: Iterable) -> Dict[str, Optional[DestinationField]]:
        mapping: Dict[str, Optional[DestinationField]] = {}
        for header in headers:
            source = cell_text(header)
            if not source or source in mapping:
                continue
            mapping[source] = self.match(source)
        unmapped = [s for s, d in mapping.items() if d is None]
        if unmapped:
            logger.debug(f"Unmapped headers: {unmapped}")
        return mapping


def automap_fields(headers: Iterable, destination: Optional[Sequence[DestinationField]] = None
                   ) -> Dict[str, Optional[DestinationField]]:
    return FieldAutoMapper(destination).automap(headers)


@dataclass(frozen=True)
class FieldOption:
    field: DestinationField
    disabled: bool          # held by another source column


class FieldMappingSession:
    """
    Editable header -> destination mapping where every destination has at most one source.

    Seeding from an automap proposal keeps the first header (input order) on a contested
    destination; the later ones start unmapped and stay listed in conflicts() until they
    are given a field of their own.
    """

    def __init__(self, sources: Iterable[str] = (), destination: Optional[Sequence[DestinationField]] = None):
        self.destination = list(destination) if destination is not None else list(DestinationField)
        self._by_source: Dict[str, Optional[DestinationField]] = {}
        self._holder: Dict[DestinationField, str] = {}
        self._proposed: Dict[DestinationField, List[str]] = {}
        for source in sources:
            self._by_source.setdefault(cell_text(source), None)

    @classmethod
    def from_proposal(cls, proposal: Mapping[str, Optional[DestinationField]],
                      destination: Optional[Sequence[DestinationField]] = None) -> "FieldMappingSession":
        session = cls(proposal.keys(), destination)
        for source, dest in proposal.items():
            if dest is None:
                continue
            session._proposed.setdefault(dest, []).append(source)
            if not session.claim(source, dest):
                logger.info(f"'{source}' was also matched to '{dest.value}', "
                            f"already taken by '{session.holder_of(dest)}'")
        return session

    @property
    def sources(self) -> List[str]:
        return list(self._by_source)

    def mapping(self) -> Dict[str, Optional[DestinationField]]:
        return dict(self._by_source)

    def field_for(self, source: str) -> Optional[DestinationField]:
        return self._by_source.get(source)

    def holder_of(self, dest: DestinationField) -> Optional[str]:
        return self._holder.get(dest)

    def claim(self, source: str, dest: Optional[DestinationField]) -> bool:
        """Point `source` at `dest`. Refused (False) when another source already holds it."""
        if dest is None:
            self.release(source)
            return True
        holder = self._holder.get(dest)
        if holder is not None and holder != source:
            return False
        self.release(source)
        self._by_source[source] = dest
        self._holder[dest] = source
        return True

    def release(self, source: str):
        current = self._by_source.get(source)
        if current is not None and self._holder.get(current) == source:
            del self._holder[current]
        self._by_source[source] = None

    def options_for(self, source: str) -> List[FieldOption]:
        return [
            FieldOption(field=dest, disabled=self._holder.get(dest) not in (None, source))
            for dest in self.destination
        ]

    def conflicts(self) -> Dict[DestinationField, List[str]]:
        """Destinations proposed for more than one source while some of those sources are still unmapped."""
        result = {}
        for dest, sources in self._proposed.items():
            if len(sources) < 2:
                continue
            if any(self._by_source.get(s) is None for s in sources):
                result[dest] = list(sources)
        return result

    def map_row(self, row: Mapping[str, Any], sheet: Optional[str] = None,
                row_number: Optional[int] = None) -> "MappedRecord":
        return map_record(row, self._by_source, sheet=sheet, row_number=row_number)


@dataclass(frozen=True)
class MappedRecord:
    """One source row expressed in destination fields, remembering where it came from."""
    values: Mapping[DestinationField, Any] = field(default_factory=dict)
    sheet: Optional[str] = None
    row: Optional[int] = None

    def get(self, dest: DestinationField, default=None):
        value = self.values.get(dest, default)
        return default if value is None else value

    def text(self, dest: DestinationField) -> str:
        return cell_text(self.values.get(dest))

    def has(self, dest: DestinationField) -> bool:
        return self.text(dest) != ""

    def category_path(self) -> List[str]:
        """Non-blank 'Category 1..10' values in level order."""
        return [self.text(level) for level in CATEGORY_LEVEL_FIELDS if self.has(level)]

    def to_document(self, include_origin: bool = False) -> Dict[str, Any]:
        doc = {dest.document_key: value for dest, value in self.values.items()}
        if include_origin:
            if self.sheet:
                doc["_sheet"] = self.sheet
            if self.row:
                doc["_row"] = self.row
        return doc


def map_record(row: Mapping[str, Any], mapping: Mapping[str, Optional[DestinationField]],
               sheet: Optional[str] = None, row_number: Optional[int] = None) -> MappedRecord:
    """Re-key a header-keyed row by destination field. Unmapped columns are dropped."""
    values: Dict[DestinationField, Any] = {}
    for source, dest in mapping.items():
        if dest is None or source not in row:
            continue
        # first source column wins if a raw proposal maps two columns to one field
        values.setdefault(dest, row[source])
    return MappedRecord(values=values, sheet=sheet, row=row_number)
