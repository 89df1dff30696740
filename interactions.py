"""
interactions.py
---------------
RxGuard — Medication Safety Validation Engine — Interaction Matcher
-------------------------------------------------------------------
Matches a set of active drug identifiers against a catalog of known
drug-drug interaction rules, and provides the bundled in-memory knowledge
source backed by ``mock_data/interactions.json``.

A rule is active iff every drug in its combination is present. The match
is pure and order-independent: permuting the prescriptions never changes
the result.

Key objects:
    - find_active_interactions(drug_ids, rules): pure matcher
    - InMemoryKnowledgeBase: async knowledge source over a rule catalog
    - load_allergy_mappings(path): allergen → drug reference table

Data files:
    - mock_data/interactions.json      {"interactions": [...]}
    - mock_data/allergy_mappings.json  {"mappings": [...]}

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List, Sequence, Union

from langsmith import traceable
from pydantic import TypeAdapter, ValidationError

from collaborators import KnowledgeSourceError
from schemas import AllergyDrugMapping, DrugInteractionRule

logger = logging.getLogger(__name__)

_RULES_ADAPTER = TypeAdapter(List[DrugInteractionRule])
_MAPPINGS_ADAPTER = TypeAdapter(List[AllergyDrugMapping])


# ── Matcher ───────────────────────────────────────────────────────────────────

@traceable
def find_active_interactions(
    drug_ids: Iterable[str],
    rules: Sequence[DrugInteractionRule],
) -> List[DrugInteractionRule]:
    """
    Return the rules whose full drug combination is present in ``drug_ids``.

    Args:
        drug_ids: Drug identifiers currently prescribed (any order, duplicates ok).
        rules:    Known interaction rules.

    Returns:
        List[DrugInteractionRule]: active rules in catalog order, each rule id
        reported once.
    """
    present = frozenset(drug_ids)
    active: List[DrugInteractionRule] = []
    seen_ids = set()
    for rule in rules:
        if rule.id in seen_ids:
            continue
        if present.issuperset(rule.drug_ids):
            active.append(rule)
            seen_ids.add(rule.id)
    return active


# ── Catalog loading ───────────────────────────────────────────────────────────

def _read_json_list(path: Path, key: str) -> list:
    try:
        with open(path) as f:
            return json.load(f)[key]
    except (FileNotFoundError, KeyError, json.JSONDecodeError) as e:
        raise KnowledgeSourceError(f"Could not load {key} from {path}: {e}") from e


def load_interaction_rules(path: Union[str, Path]) -> List[DrugInteractionRule]:
    """
    Load and validate an interaction catalog.

    Raises:
        KnowledgeSourceError: if the file is missing, unreadable, or any
            rule fails validation.
    """
    raw = _read_json_list(Path(path), "interactions")
    try:
        rules = _RULES_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise KnowledgeSourceError(f"Interaction catalog {path} is malformed: {exc}") from exc
    logger.info("interactions: loaded %d interaction rules from %s", len(rules), path)
    return rules


def load_allergy_mappings(path: Union[str, Path]) -> List[AllergyDrugMapping]:
    """
    Load and validate an allergen-to-drug mapping table.

    Raises:
        KnowledgeSourceError: if the file is missing, unreadable, or malformed.
    """
    raw = _read_json_list(Path(path), "mappings")
    try:
        mappings = _MAPPINGS_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise KnowledgeSourceError(f"Allergy mapping table {path} is malformed: {exc}") from exc
    logger.info("interactions: loaded %d allergy mappings from %s", len(mappings), path)
    return mappings


# ── Knowledge source ──────────────────────────────────────────────────────────

class InMemoryKnowledgeBase:
    """
    Knowledge source over a fixed rule catalog.

    The catalog is read-only; lookups never mutate or cache anything.
    """

    def __init__(self, rules: Sequence[DrugInteractionRule]) -> None:
        self._rules = tuple(rules)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "InMemoryKnowledgeBase":
        return cls(load_interaction_rules(path))

    @property
    def rules(self) -> Sequence[DrugInteractionRule]:
        return self._rules

    async def find_interactions(self, drug_ids: List[str]) -> List[DrugInteractionRule]:
        found = find_active_interactions(drug_ids, self._rules)
        logger.debug(
            "InMemoryKnowledgeBase: %d of %d rules active for %d drugs.",
            len(found), len(self._rules), len(set(drug_ids)),
        )
        return found
