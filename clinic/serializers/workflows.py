from rest_framework import serializers

from clinic.services.workflows import EVENTS, STEP_HANDLERS

TRIGGERS = ['manual', 'event', 'schedule']


class WorkflowStepSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=sorted(STEP_HANDLERS))
    config = serializers.DictField(required=False, default=dict)
    condition = serializers.JSONField(required=False)


class WorkflowSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True)
    category = serializers.CharField(max_length=64)
    trigger_type = serializers.ChoiceField(choices=TRIGGERS)
    trigger_config = serializers.DictField(required=False, default=dict)
    steps = WorkflowStepSerializer(many=True, required=False, default=list)
    is_active = serializers.BooleanField(required=False, default=True)
    priority = serializers.IntegerField(required=False, default=0)
    center_id = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=32)

    def validate(self, attrs):
        trigger_type = attrs.get('trigger_type') or getattr(self.instance, 'trigger_type', None)
        trigger_config = attrs.get('trigger_config')
        if trigger_config is None and self.instance is not None:
            trigger_config = self.instance.trigger_config
        if trigger_type == 'event' and (trigger_config or {}).get('event') not in EVENTS:
            raise serializers.ValidationError(
                {'trigger_config': [f"Event workflows need trigger_config.event in {', '.join(EVENTS)}."]}
            )
        return attrs


class WorkflowExecuteSerializer(serializers.Serializer):
    entity_type = serializers.CharField(required=False, allow_blank=True, max_length=64)
    entity_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
    context = serializers.DictField(required=False, default=dict)
