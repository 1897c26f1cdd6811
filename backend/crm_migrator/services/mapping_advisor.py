from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from crm_migrator.services.workbook_analyzer import AnalyzedSheet

logger = logging.getLogger(__name__)


class TargetEntity(str, Enum):
    ORGANIZATIONS = "organizations"
    CONTACTS = "contacts"
    OPPORTUNITIES = "opportunities"
    INTERACTIONS = "interactions"


# Contacts and opportunities reference organizations; interactions reference all three.
ENTITY_ORDER = (
    TargetEntity.ORGANIZATIONS,
    TargetEntity.CONTACTS,
    TargetEntity.OPPORTUNITIES,
    TargetEntity.INTERACTIONS,
)


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_TIER_RANK = {ConfidenceTier.HIGH: 0, ConfidenceTier.MEDIUM: 1, ConfidenceTier.LOW: 2}


@dataclass(frozen=True)
class FieldPattern:
    target_field: str
    keywords: tuple[str, ...]
    priority: int


@dataclass
class MappingSuggestion:
    source_column: str
    column_index: int
    target_field: str
    confidence: ConfidenceTier
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceColumn": self.source_column,
            "columnIndex": self.column_index,
            "targetField": self.target_field,
            "confidenceTier": self.confidence.value,
            "reason": self.reason,
        }


def _patterns(*rows: tuple[str, Iterable[str], int]) -> tuple[FieldPattern, ...]:
    return tuple(FieldPattern(field, tuple(keywords), priority) for field, keywords, priority in rows)


FIELD_PATTERNS: dict[TargetEntity, tuple[FieldPattern, ...]] = {
    TargetEntity.ORGANIZATIONS: _patterns(
        ("name", ["organization", "company", "business", "customer", "client"], 1),
        ("priority", ["priority", "tier", "level", "importance"], 1),
        ("segment", ["segment", "category", "type", "industry"], 1),
        ("distributor", ["distributor", "supplier", "vendor"], 2),
        ("accountManager", ["manager", "account", "rep", "owner"], 2),
        ("phone", ["phone", "telephone", "tel", "mobile"], 2),
        ("email", ["email", "e-mail", "mail"], 2),
        ("address", ["address", "street", "location"], 2),
        ("city", ["city", "town"], 3),
        ("state", ["state", "province"], 3),
        ("zipCode", ["zip", "postal", "postcode"], 3),
        ("notes", ["notes", "comments", "remarks"], 3),
    ),
    TargetEntity.CONTACTS: _patterns(
        ("fullName", ["name", "full", "contact"], 1),
        ("firstName", ["first", "fname", "given"], 1),
        ("lastName", ["last", "lname", "surname"], 1),
        ("organizationName", ["organization", "company", "business"], 1),
        ("position", ["position", "title", "role", "job"], 2),
        ("email", ["email", "e-mail"], 2),
        ("phone", ["phone", "mobile", "tel"], 2),
        ("accountManager", ["manager", "account", "owner"], 3),
        ("linkedIn", ["linkedin", "social"], 3),
    ),
    TargetEntity.OPPORTUNITIES: _patterns(
        ("organizationName", ["organization", "company", "customer"], 1),
        ("name", ["opportunity", "deal", "name"], 1),
        ("stage", ["stage", "phase", "step"], 1),
        ("status", ["status", "state"], 1),
        ("value", ["value", "amount", "revenue", "volume"], 2),
        ("probability", ["probability", "chance", "likelihood"], 2),
        ("startDate", ["start", "begin", "created"], 2),
        ("expectedCloseDate", ["close", "end", "expected", "target"], 2),
        ("principal", ["principal", "brand"], 3),
        ("product", ["product", "item", "sku"], 3),
        ("owner", ["owner", "rep", "manager"], 3),
    ),
    TargetEntity.INTERACTIONS: _patterns(
        ("date", ["date", "when", "time"], 1),
        ("type", ["interaction", "type", "activity", "action"], 1),
        ("organizationName", ["organization", "company", "account"], 1),
        ("contactName", ["contact", "person", "who"], 2),
        ("accountManager", ["manager", "account", "rep"], 2),
        ("opportunity", ["opportunity", "deal"], 3),
        ("principal", ["principal", "brand"], 3),
        ("notes", ["notes", "description", "details"], 3),
    ),
}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def normalize(text: str) -> str:
    return _NON_ALNUM_RE.sub("", (text or "").lower())


def match_keyword(header: str, keyword: str, priority: int) -> tuple[ConfidenceTier, str] | None:
    """Compare two normalized strings. Returns (tier, reason) or None."""
    if not header or not keyword:
        return None
    if header == keyword:
        return ConfidenceTier.HIGH, "Exact match"
    if keyword in header or header in keyword:
        tier = ConfidenceTier.HIGH if priority == 1 else ConfidenceTier.MEDIUM
        return tier, "Contains keyword"
    if header.startswith(keyword) or header.endswith(keyword):
        return ConfidenceTier.MEDIUM, "Partial match"
    return None


def identify_target_entity(sheet_name: str, headers: Iterable[str]) -> TargetEntity | None:
    """Decide which entity a sheet feeds, by sheet name first, then header content."""
    name = (sheet_name or "").lower()
    if "organization" in name or "company" in name:
        return TargetEntity.ORGANIZATIONS
    if "contact" in name and "interaction" not in name:
        return TargetEntity.CONTACTS
    if "interaction" in name:
        return TargetEntity.INTERACTIONS
    if "opportunit" in name:
        return TargetEntity.OPPORTUNITIES

    header_text = " ".join(headers).lower()
    if "organization" in header_text or "company" in header_text:
        return TargetEntity.ORGANIZATIONS
    if "first" in header_text and "last" in header_text and ("name" in header_text or "contact" in header_text):
        return TargetEntity.CONTACTS
    if "interaction" in header_text or "activity" in header_text:
        return TargetEntity.INTERACTIONS
    if "opportunity" in header_text or "deal" in header_text:
        return TargetEntity.OPPORTUNITIES
    return None


class MappingAdvisor:
    def __init__(self, field_patterns: dict[TargetEntity, tuple[FieldPattern, ...]] | None = None) -> None:
        self.field_patterns = field_patterns or FIELD_PATTERNS

    def suggest(self, sheet: AnalyzedSheet, entity: TargetEntity) -> list[MappingSuggestion]:
        patterns = self.field_patterns.get(entity, ())
        by_field: dict[str, MappingSuggestion] = {}
        order: list[str] = []

        for profile in sheet.column_profiles:
            header = normalize(profile.header)
            if not header:
                continue
            for pattern in patterns:
                for keyword in pattern.keywords:
                    hit = match_keyword(header, normalize(keyword), pattern.priority)
                    if hit is None:
                        continue
                    tier, reason = hit
                    candidate = MappingSuggestion(
                        source_column=profile.header,
                        column_index=profile.index,
                        target_field=pattern.target_field,
                        confidence=tier,
                        reason=reason,
                    )
                    existing = by_field.get(pattern.target_field)
                    if existing is None:
                        by_field[pattern.target_field] = candidate
                        order.append(pattern.target_field)
                    elif tier == ConfidenceTier.HIGH and existing.confidence != ConfidenceTier.HIGH:
                        # replaced entries move to the end, before the tier sort
                        order.remove(pattern.target_field)
                        by_field[pattern.target_field] = candidate
                        order.append(pattern.target_field)
                    break

        suggestions = [by_field[f] for f in order]
        suggestions.sort(key=lambda s: _TIER_RANK[s.confidence])
        logger.debug(
            "mapping_advisor.suggest sheet=%s entity=%s suggestions=%s",
            sheet.name,
            entity.value,
            len(suggestions),
        )
        return suggestions
