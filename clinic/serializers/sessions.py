from rest_framework import serializers

SESSION_STATUSES = ['scheduled', 'in_progress', 'completed', 'cancelled']
CLINICAL_FIELDS = ('chief_complaint', 'assessment', 'plan', 'diagnosis', 'treatment', 'notes')


class SessionCreateSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
    visit_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    appointment_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    insurance_approval_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    date = serializers.DateTimeField(required=False)
    duration = serializers.IntegerField(min_value=5, max_value=480, required=False, default=30)
    session_type = serializers.CharField(max_length=64)
    chief_complaint = serializers.CharField(required=False, allow_blank=True)
    assessment = serializers.CharField(required=False, allow_blank=True)
    plan = serializers.CharField(required=False, allow_blank=True)
    diagnosis = serializers.CharField(required=False, allow_blank=True)
    treatment = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class SessionUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=SESSION_STATUSES, required=False)
    duration = serializers.IntegerField(min_value=5, max_value=480, required=False)
    insurance_approval_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    chief_complaint = serializers.CharField(required=False, allow_blank=True)
    assessment = serializers.CharField(required=False, allow_blank=True)
    plan = serializers.CharField(required=False, allow_blank=True)
    diagnosis = serializers.CharField(required=False, allow_blank=True)
    treatment = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)


class SessionValidateSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(required=False, allow_null=True)
    doctor_id = serializers.IntegerField(required=False, allow_null=True)
    session_type = serializers.CharField(required=False, allow_blank=True)
    service_type = serializers.CharField(required=False, allow_blank=True)
    insurance_approval_id = serializers.IntegerField(required=False, allow_null=True)
    chief_complaint = serializers.CharField(required=False, allow_blank=True)
    assessment = serializers.CharField(required=False, allow_blank=True)
    plan = serializers.CharField(required=False, allow_blank=True)
    diagnosis = serializers.CharField(required=False, allow_blank=True)
    treatment = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
