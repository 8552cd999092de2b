from rest_framework import serializers

from .common import clean_text

STATUSES = ['pending', 'confirmed', 'completed', 'cancelled']


class AppointmentCreateSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
    doctor_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    date = serializers.DateField()
    time = serializers.TimeField(required=False, allow_null=True)
    duration = serializers.IntegerField(required=False, min_value=5, max_value=480, default=30)
    appointment_type = serializers.CharField(required=False, max_length=64, default='consultation')
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_notes(self, v):
        return clean_text(v)


class AppointmentUpdateSerializer(serializers.Serializer):
    doctor_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    date = serializers.DateField(required=False)
    time = serializers.TimeField(required=False, allow_null=True)
    duration = serializers.IntegerField(required=False, min_value=5, max_value=480)
    appointment_type = serializers.CharField(required=False, max_length=64)
    status = serializers.ChoiceField(choices=STATUSES, required=False)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_notes(self, v):
        return clean_text(v)


class AppointmentListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=100, default=20)
    status = serializers.ChoiceField(choices=STATUSES, required=False)
    date = serializers.DateField(required=False)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)
    doctor_id = serializers.IntegerField(required=False, min_value=1)
    patient_id = serializers.IntegerField(required=False, min_value=1)
