"""Rename/hide rule engine for teacher, promo and subject labels.

Rules are immutable ``NormalizationRules`` values; every edit goes through a
pure update function returning a new value.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from ..lite_models import HiddenRules, NormalizationRules, RuleCategory

logger = logging.getLogger(__name__)


def normalize_value(
    rename_map: Mapping[str, str], hide_map: Mapping[str, bool], raw_value: str | None
) -> str:
    """Apply rename/hide rules to one raw value.

    Hiding wins over renaming. Unmapped values pass through trimmed, and an
    empty rename target is ignored.

    Args:
        rename_map: raw value -> display value
        hide_map: raw value -> suppressed flag
        raw_value: value as found on the event

    Returns:
        Normalized value, or "" when suppressed
    """
    value = (raw_value or "").strip()
    if not value:
        return ""
    if hide_map.get(value):
        return ""
    candidate = rename_map.get(value)
    if candidate:
        renamed = candidate.strip()
        if renamed:
            return renamed
    return value


def normalize_list(
    values: Iterable[str] | None,
    rename_map: Mapping[str, str],
    hide_map: Mapping[str, bool],
) -> tuple[str, ...]:
    """Normalize every value, dropping suppressed ones and duplicates.

    First-seen order is kept so the joined display strings are deterministic.
    """
    result: list[str] = []
    seen: set[str] = set()
    for raw in values or ():
        normalized = normalize_value(rename_map, hide_map, raw)
        if normalized and normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return tuple(result)


def default_normalization_rules() -> NormalizationRules:
    """Empty rule set: every value passes through unchanged."""
    return NormalizationRules()


def set_rename(
    rules: NormalizationRules, category: RuleCategory, raw_value: str, display_value: str
) -> NormalizationRules:
    """Return new rules with ``raw_value`` renamed to ``display_value``.

    An empty display value removes the rename entry instead.
    """
    key = raw_value.strip()
    target = display_value.strip()
    if not key:
        return rules
    if not target:
        return remove_rename(rules, category, key)
    category = RuleCategory(category)
    updated = dict(rules.rename_map(category))
    updated[key] = target
    return rules.model_copy(update={category.value: updated})


def remove_rename(
    rules: NormalizationRules, category: RuleCategory, raw_value: str
) -> NormalizationRules:
    """Return new rules without a rename entry for ``raw_value``."""
    category = RuleCategory(category)
    current = rules.rename_map(category)
    key = raw_value.strip()
    if key not in current:
        return rules
    updated = {k: v for k, v in current.items() if k != key}
    return rules.model_copy(update={category.value: updated})


def set_hidden(
    rules: NormalizationRules, category: RuleCategory, raw_value: str, hidden: bool
) -> NormalizationRules:
    """Return new rules with ``raw_value`` hidden or shown again."""
    category = RuleCategory(category)
    key = raw_value.strip()
    if not key:
        return rules
    updated = dict(rules.hide_map(category))
    if hidden:
        updated[key] = True
    else:
        updated.pop(key, None)
    new_hidden = rules.hidden.model_copy(update={category.value: updated})
    return rules.model_copy(update={"hidden": new_hidden})


def coerce_normalization_rules(data: Any) -> NormalizationRules:
    """Build rules from persisted data, tolerating missing or malformed parts.

    Unknown keys are ignored, non-mapping categories become empty, and
    non-string entries are skipped.
    """
    if isinstance(data, NormalizationRules):
        return data
    if not isinstance(data, Mapping):
        return default_normalization_rules()

    def _rename(raw: Any) -> dict[str, str]:
        if not isinstance(raw, Mapping):
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _hide(raw: Any) -> dict[str, bool]:
        if not isinstance(raw, Mapping):
            return {}
        return {str(k): bool(v) for k, v in raw.items()}

    hidden_raw = data.get("hidden")
    if not isinstance(hidden_raw, Mapping):
        hidden_raw = {}

    try:
        return NormalizationRules(
            teachers=_rename(data.get("teachers")),
            promos=_rename(data.get("promos")),
            subjects=_rename(data.get("subjects")),
            hidden=HiddenRules(
                teachers=_hide(hidden_raw.get("teachers")),
                promos=_hide(hidden_raw.get("promos")),
                subjects=_hide(hidden_raw.get("subjects")),
            ),
        )
    except ValidationError as exc:
        logger.warning("Discarding malformed normalization rules: %s", exc)
        return default_normalization_rules()
