"""
allergy_check.py
----------------
RxGuard — Medication Safety Validation Engine — Allergy conflict checker
------------------------------------------------------------------------
Cross-references a patient's documented allergies against prescribed drugs
through allergen-to-drug mappings and grades each hit low / medium / high.
Pure: no I/O, no state; the mapping table is read, never modified.

Risk rules, first match wins:
    1. reaction anaphylaxis          → high (cross-reactivity ignored)
    2. severity severe               → high if xr >= severe_high, else medium
    3. severity moderate             → high if xr >= moderate_high,
                                       medium if xr >= moderate_medium, else low
    4. mild or unspecified severity  → medium if xr >= mild_medium, else low

Cut-offs come from ``safety_guidelines.RiskThresholds``.

Key functions:
    - determine_risk_level
    - generate_recommendation
    - find_conflicts

Project: RxGuard — Medication Safety Validation Engine
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from langsmith import traceable

from safety_guidelines import RISK_RECOMMENDATIONS, RiskThresholds
from schemas import (
    Allergy,
    AllergyConflict,
    AllergyDrugMapping,
    AllergySeverity,
    Prescription,
    ReactionType,
    RiskLevel,
)

logger = logging.getLogger(__name__)

_DEFAULT_THRESHOLDS = RiskThresholds()


def determine_risk_level(
    allergy: Allergy,
    cross_reactivity: float,
    thresholds: Optional[RiskThresholds] = None,
) -> RiskLevel:
    """
    Grade one allergy/drug pairing.

    Args:
        allergy:          The documented allergy.
        cross_reactivity: Mapping probability in [0.0, 1.0].
        thresholds:       Cut-offs; the defaults apply when omitted.

    Returns:
        RiskLevel: high, medium or low.
    """
    t = thresholds or _DEFAULT_THRESHOLDS

    if allergy.reaction == ReactionType.ANAPHYLAXIS:
        return RiskLevel.HIGH

    if allergy.severity == AllergySeverity.SEVERE:
        return RiskLevel.HIGH if cross_reactivity >= t.severe_high else RiskLevel.MEDIUM

    if allergy.severity == AllergySeverity.MODERATE:
        if cross_reactivity >= t.moderate_high:
            return RiskLevel.HIGH
        if cross_reactivity >= t.moderate_medium:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    # mild, or severity not recorded
    return RiskLevel.MEDIUM if cross_reactivity >= t.mild_medium else RiskLevel.LOW


def generate_recommendation(
    allergy: Allergy,
    cross_reactivity: float,
    risk_level: RiskLevel,
) -> str:
    """Clinician-facing text naming the allergen and the cross-reactivity percentage."""
    pct = f"{cross_reactivity * 100:.0f}"
    if allergy.reaction == ReactionType.ANAPHYLAXIS:
        template = RISK_RECOMMENDATIONS["anaphylaxis"]
    else:
        template = RISK_RECOMMENDATIONS[risk_level.value]
    # severity not recorded
    severity = allergy.severity.value.capitalize() if allergy.severity else "Documented"
    return template.format(allergen=allergy.allergen, pct=pct, severity=severity)


@traceable
def find_conflicts(
    allergies: Sequence[Allergy],
    prescriptions: Sequence[Prescription],
    mappings: Sequence[AllergyDrugMapping],
    thresholds: Optional[RiskThresholds] = None,
) -> List[AllergyConflict]:
    """
    List every allergy conflict among the given prescriptions.

    Allergies with no mapping (food, environmental …) are skipped. Each
    (allergy, matching prescription) pair yields exactly one conflict, in
    allergy order then prescription order.

    Args:
        allergies:     The patient's documented allergies.
        prescriptions: Prescriptions to screen.
        mappings:      Allergen → related drug reference data.
        thresholds:    Risk cut-offs; defaults when omitted.

    Returns:
        List[AllergyConflict]: possibly empty.
    """
    by_allergen: Dict[str, AllergyDrugMapping] = {}
    for mapping in mappings:
        by_allergen.setdefault(mapping.allergen, mapping)

    conflicts: List[AllergyConflict] = []
    for allergy in allergies:
        mapping = by_allergen.get(allergy.allergen)
        if mapping is None:
            continue
        related = set(mapping.related_drug_ids)
        for prescription in prescriptions:
            if prescription.drug_id not in related:
                continue
            risk = determine_risk_level(allergy, mapping.cross_reactivity, thresholds)
            conflicts.append(AllergyConflict(
                allergen=allergy.allergen,
                conflicting_drug_id=prescription.drug_id,
                cross_reactivity=mapping.cross_reactivity,
                risk_level=risk,
                recommendation=generate_recommendation(allergy, mapping.cross_reactivity, risk),
            ))

    if conflicts:
        logger.info(
            "allergy_check: %d conflict(s) across %d allergies and %d prescriptions.",
            len(conflicts), len(allergies), len(prescriptions),
        )
    return conflicts
