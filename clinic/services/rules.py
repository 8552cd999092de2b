"""
Business rules engine.

Admins store rules as JSON conditions (see :func:`check_condition`)
together with an action.  The engine loads active rules ordered by
priority, keeps them in the Django cache for
``BUSINESS_RULES_CACHE_TTL`` seconds and evaluates them against a plain
dict context.  A condition that holds means the rule passes; a failed
rule reports its action so that callers can decide whether to block,
warn or ask for approval.

If the rules table cannot be read the engine falls back to
:data:`DEFAULT_RULES` so that payment gating never silently disappears.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError

from clinic.models import BusinessRule

logger = logging.getLogger(__name__)

CACHE_KEY = 'clinic:business_rules:active'
OPERATORS = ('equals', 'not_equals', 'exists', 'in', 'not_in')
_MISSING = object()

DEFAULT_RULES: list[dict[str, Any]] = [
    {
        'id': 'default_payment_required',
        'name': 'Payment required before session',
        'description': 'Block the hand-off unless the visit is free, paid or covered by insurance.',
        'rule_type': 'payment_required',
        'condition': {
            'or': [
                {'field': 'patient.is_first_visit', 'equals': True},
                {'field': 'payment.paid', 'equals': True},
                {'field': 'insurance.approved', 'equals': True},
            ],
            'required_fields': ['payment', 'insurance_approval'],
        },
        'action': BusinessRule.ACTION_BLOCK,
        'priority': 20,
        'applies_to': ['reception', 'doctor'],
        'error_message': 'Payment or an insurance approval is required before opening a session',
        'center_id': None,
    },
    {
        'id': 'default_first_visit_free',
        'name': 'First consultation is free',
        'description': 'Allow the first consultation without payment.',
        'rule_type': 'first_visit_free',
        'condition': {
            'and': [
                {'field': 'patient.is_first_visit', 'equals': True},
                {'field': 'session.type', 'equals': 'consultation'},
            ],
        },
        'action': BusinessRule.ACTION_ALLOW,
        'priority': 10,
        'applies_to': ['reception', 'doctor'],
        'error_message': '',
        'center_id': None,
    },
]


class MalformedCondition(ValueError):
    pass


@dataclass
class RuleResult:
    rule_id: Any
    rule_name: str
    passed: bool
    action: str
    message: Optional[str] = None
    required_fields: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            'rule_id': self.rule_id,
            'rule_name': self.rule_name,
            'passed': self.passed,
            'action': self.action,
            'message': self.message,
            'required_fields': self.required_fields,
        }


def get_nested_value(obj: Any, path: str) -> Any:
    """Resolve a dotted ``path`` inside nested dicts; missing keys give ``None``."""
    current = obj
    for key in path.split('.'):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _strict_equals(a: Any, b: Any) -> bool:
    # True == 1 in Python; rules compare like JSON values
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    return a == b


def _contains(values: Iterable, value: Any) -> bool:
    return any(_strict_equals(v, value) for v in values)


def check_condition(condition: Any, context: dict[str, Any]) -> bool:
    """Return True when ``condition`` holds for ``context``.

    Supported shapes::

        {"and": [cond, ...]}            every sub-condition holds
        {"or": [cond, ...]}             at least one holds
        {"field": "a.b", "equals": v}   also not_equals, exists, in, not_in

    Only the first operator present on a field condition is used.  A
    non-object or empty condition, or a field condition without an
    operator, holds.
    """
    if not condition or not isinstance(condition, dict):
        return True
    if 'and' in condition:
        parts = condition['and']
        if not isinstance(parts, list):
            raise MalformedCondition('"and" must be a list')
        return all(check_condition(c, context) for c in parts)
    if 'or' in condition:
        parts = condition['or']
        if not isinstance(parts, list):
            raise MalformedCondition('"or" must be a list')
        return any(check_condition(c, context) for c in parts)
    if 'field' not in condition:
        return True
    path = condition['field']
    if not isinstance(path, str) or not path:
        raise MalformedCondition('"field" must be a non-empty string')
    value = get_nested_value(context, path)
    for op in OPERATORS:
        operand = condition.get(op, _MISSING)
        if operand is _MISSING:
            continue
        if op == 'equals':
            return _strict_equals(value, operand)
        if op == 'not_equals':
            return not _strict_equals(value, operand)
        if op == 'exists':
            return (value is not None) if operand else (value is None)
        if op == 'in':
            return isinstance(operand, list) and _contains(operand, value)
        if op == 'not_in':
            return not isinstance(operand, list) or not _contains(operand, value)
    return True


def validate_condition(condition: Any) -> None:
    """Raise :class:`MalformedCondition` if any part of ``condition`` is malformed."""
    if not condition or not isinstance(condition, dict):
        return
    for key in ('and', 'or'):
        if key in condition:
            if not isinstance(condition[key], list):
                raise MalformedCondition(f'"{key}" must be a list')
            for part in condition[key]:
                validate_condition(part)
            return
    if 'field' in condition and (not isinstance(condition['field'], str) or not condition['field']):
        raise MalformedCondition('"field" must be a non-empty string')


def rule_to_dict(rule: BusinessRule) -> dict[str, Any]:
    return {
        'id': rule.id,
        'name': rule.name,
        'description': rule.description,
        'rule_type': rule.rule_type,
        'condition': rule.condition,
        'action': rule.action,
        'priority': rule.priority,
        'applies_to': rule.applies_to or [],
        'error_message': rule.error_message,
        'center_id': rule.center_id,
    }


class BusinessRulesEngine:
    """Load, cache and evaluate business rules."""

    def __init__(self, ttl: Optional[int] = None):
        self._ttl = ttl

    @property
    def ttl(self) -> int:
        return self._ttl if self._ttl is not None else settings.BUSINESS_RULES_CACHE_TTL

    def load_rules(self) -> list[dict[str, Any]]:
        rules = cache.get(CACHE_KEY)
        if rules is not None:
            return rules
        try:
            rules = [
                rule_to_dict(r)
                for r in BusinessRule.objects.filter(is_active=True).order_by('-priority', 'id')
            ]
        except DatabaseError:
            logger.exception('Could not load business rules, using defaults')
            return list(DEFAULT_RULES)
        cache.set(CACHE_KEY, rules, self.ttl)
        return rules

    def invalidate(self) -> None:
        cache.delete(CACHE_KEY)

    @staticmethod
    def _applies(rule: dict[str, Any], role: Optional[str], center_id: Optional[str]) -> bool:
        if rule.get('center_id') and rule['center_id'] != center_id:
            return False
        if role is None:
            return True
        applies_to = rule.get('applies_to') or []
        if isinstance(applies_to, str):
            applies_to = [applies_to]
        return role in applies_to or 'all' in applies_to

    def evaluate_rule(self, rule: dict[str, Any], context: dict[str, Any]) -> Optional[RuleResult]:
        condition = rule.get('condition') or {}
        try:
            passed = check_condition(condition, context)
        except (MalformedCondition, TypeError, AttributeError) as exc:
            logger.error('Skipping rule %s with malformed condition: %s', rule.get('id'), exc)
            return None
        if passed:
            return RuleResult(rule['id'], rule['name'], True, rule['action'])
        required = condition.get('required_fields') if isinstance(condition, dict) else None
        return RuleResult(
            rule['id'],
            rule['name'],
            False,
            rule['action'],
            message=rule.get('error_message') or f"Rule violation: {rule['name']}",
            required_fields=list(required) if isinstance(required, list) else [],
        )

    def evaluate(self, context: dict[str, Any], role: Optional[str] = None,
                 center_id: Optional[str] = None,
                 rule_types: Optional[Iterable[str]] = None) -> list[RuleResult]:
        types = set(rule_types) if rule_types is not None else None
        results: list[RuleResult] = []
        for rule in self.load_rules():
            if types is not None and rule.get('rule_type') not in types:
                continue
            if not self._applies(rule, role, center_id):
                continue
            result = self.evaluate_rule(rule, context)
            if result is not None:
                results.append(result)
        return results


rules_engine = BusinessRulesEngine()
