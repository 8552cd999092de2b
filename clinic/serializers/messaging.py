from rest_framework import serializers


class WhatsAppSendSerializer(serializers.Serializer):
    conversation_id = serializers.IntegerField(min_value=1, required=False)
    phone = serializers.CharField(required=False, max_length=32)
    patient_id = serializers.IntegerField(min_value=1, required=False)
    message = serializers.CharField(max_length=4096)

    def validate(self, attrs):
        if not (attrs.get('conversation_id') or attrs.get('phone') or attrs.get('patient_id')):
            raise serializers.ValidationError('conversation_id, phone or patient_id is required.')
        return attrs


class NotificationUpdateSerializer(serializers.Serializer):
    is_read = serializers.BooleanField(default=True)
