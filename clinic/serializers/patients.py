from rest_framework import serializers

from .common import clean_text

GENDERS = ['male', 'female', 'other']


class PatientCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    phone = serializers.CharField(max_length=32)
    email = serializers.EmailField(required=False, allow_blank=True)
    nationality = serializers.CharField(required=False, allow_blank=True, max_length=64)
    national_id = serializers.CharField(required=False, allow_blank=True, max_length=64)
    date_of_birth = serializers.DateField(required=False, allow_null=True)
    gender = serializers.ChoiceField(choices=GENDERS, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    center_id = serializers.CharField(required=False, allow_blank=True, max_length=32)

    def validate_name(self, v):
        v = clean_text(v)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters.')
        return v

    def validate_phone(self, v):
        v = clean_text(v)
        if sum(c.isdigit() for c in v) < 7:
            raise serializers.ValidationError('Enter a valid phone number.')
        return v

    def validate_notes(self, v):
        return clean_text(v)


class PatientUpdateSerializer(PatientCreateSerializer):
    name = serializers.CharField(max_length=255, required=False)
    phone = serializers.CharField(max_length=32, required=False)
    status = serializers.ChoiceField(choices=['active', 'inactive'], required=False)


class InsurancePolicySerializer(serializers.Serializer):
    provider = serializers.CharField(max_length=128)
    policy_number = serializers.CharField(max_length=64)
    policy_holder_name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    coverage_type = serializers.CharField(required=False, allow_blank=True, max_length=64)
    coverage_start_date = serializers.DateField(required=False, allow_null=True)
    coverage_end_date = serializers.DateField(required=False, allow_null=True)
    is_active = serializers.BooleanField(required=False, default=True)

    def validate(self, attrs):
        start, end = attrs.get('coverage_start_date'), attrs.get('coverage_end_date')
        if start and end and end < start:
            raise serializers.ValidationError({'coverage_end_date': ['Coverage ends before it starts.']})
        return attrs
