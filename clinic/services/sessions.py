"""
Clinical session data validation.

Doctors must record the basic session fields.  Sessions billed to an
insurance approval also need the clinical narrative insurers ask for.
Admin rules of type ``session_data_complete`` can add further required
fields (``block``) or warnings (``warn``).
"""
from __future__ import annotations

from typing import Any, Optional

from clinic.services.rules import rules_engine

BASIC_FIELDS = ('patient_id', 'doctor_id', 'session_type')
INSURANCE_FIELDS = ('chief_complaint', 'assessment', 'plan', 'diagnosis')

SUGGESTIONS = {
    'chief_complaint': 'Record the chief complaint in the patient\'s own words',
    'assessment': 'Summarise the clinical assessment',
    'plan': 'Describe the treatment plan and follow-up',
    'diagnosis': 'Add a diagnosis (ICD-10 code if available)',
}


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_session_data(data: dict[str, Any], *, center_id: Optional[str] = None) -> dict[str, Any]:
    missing = [f for f in BASIC_FIELDS if _blank(data.get(f))]
    if missing:
        return {
            'isValid': False,
            'isComplete': False,
            'missingFields': missing,
            'warnings': [],
            'suggestions': [],
        }

    warnings: list[str] = []
    if data.get('insurance_approval_id'):
        missing.extend(f for f in INSURANCE_FIELDS if _blank(data.get(f)))

    results = rules_engine.evaluate(
        {'session': data}, role='doctor', center_id=center_id, rule_types=('session_data_complete',),
    )
    for r in results:
        if r.passed:
            continue
        if r.action == 'block':
            missing.extend(f for f in r.required_fields if f not in missing)
            if r.message:
                warnings.append(r.message)
        elif r.action in ('warn', 'require_approval') and r.message:
            warnings.append(r.message)

    suggestions = [SUGGESTIONS[f] for f in INSURANCE_FIELDS if _blank(data.get(f))]
    return {
        'isValid': not missing,
        'isComplete': not missing and not suggestions,
        'missingFields': missing,
        'warnings': warnings,
        'suggestions': suggestions,
    }
