from rest_framework import serializers

from clinic.models import BusinessRule
from clinic.services import rules as rules_service

RULE_TYPES = [c for c, _ in BusinessRule.TYPE_CHOICES]
ACTIONS = [c for c, _ in BusinessRule.ACTION_CHOICES]


class BusinessRuleSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    rule_type = serializers.ChoiceField(choices=RULE_TYPES)
    condition = serializers.JSONField()
    action = serializers.ChoiceField(choices=ACTIONS)
    priority = serializers.IntegerField(required=False, default=0)
    is_active = serializers.BooleanField(required=False, default=True)
    applies_to = serializers.ListField(child=serializers.CharField(max_length=16), required=False,
                                       default=list)
    error_message = serializers.CharField(required=False, allow_blank=True, max_length=500)
    center_id = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=32)

    def validate_condition(self, v):
        if not isinstance(v, dict):
            raise serializers.ValidationError('Condition must be a JSON object.')
        try:
            rules_service.validate_condition(v)
        except rules_service.MalformedCondition as exc:
            raise serializers.ValidationError(str(exc))
        required = v.get('required_fields')
        if required is not None and not isinstance(required, list):
            raise serializers.ValidationError('required_fields must be a list.')
        return v


class RuleEvaluateSerializer(serializers.Serializer):
    context = serializers.JSONField()
    role = serializers.CharField(required=False, allow_blank=True)
    center_id = serializers.CharField(required=False, allow_blank=True)
    rule_types = serializers.ListField(child=serializers.ChoiceField(choices=RULE_TYPES), required=False)

    def validate_context(self, v):
        if not isinstance(v, dict):
            raise serializers.ValidationError('Context must be a JSON object.')
        return v
