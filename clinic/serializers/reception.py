from rest_framework import serializers

from .common import clean_text

PRIORITIES = ['normal', 'high', 'urgent']
QUEUE_STATUSES = ['checked_in', 'waiting', 'in_progress', 'completed', 'cancelled', 'no_show']


class QueueAddSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
    appointment_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    doctor_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    priority = serializers.ChoiceField(choices=PRIORITIES, required=False, default='normal')
    service_type = serializers.CharField(required=False, allow_blank=True, max_length=64)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_notes(self, v):
        return clean_text(v)


class QueueUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=QUEUE_STATUSES, required=False)
    priority = serializers.ChoiceField(choices=PRIORITIES, required=False)
    doctor_id = serializers.IntegerField(min_value=1, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class QueueListQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False)
    status = serializers.CharField(required=False, allow_blank=True)


class ConfirmToDoctorSerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField(min_value=1, error_messages={'required': 'Doctor ID is required'})
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_notes(self, v):
        return clean_text(v)


class PaymentVerifySerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
    session_type = serializers.CharField(required=False, max_length=64, default='consultation')
    service_type = serializers.CharField(required=False, allow_blank=True, max_length=64)


class VisitStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['in_progress', 'completed', 'cancelled'])
