from decimal import Decimal

from rest_framework import serializers


class ApprovalRequestSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
    visit_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    insurance_provider = serializers.CharField(max_length=128, required=False, allow_blank=True)
    service_type = serializers.CharField(max_length=64)
    requested_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))
    notes = serializers.CharField(required=False, allow_blank=True)


class ApprovalCheckSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
    service_type = serializers.CharField(max_length=64, required=False, allow_blank=True)


class ApprovalDecisionSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=['approved', 'rejected'])
    approval_number = serializers.CharField(required=False, allow_blank=True, max_length=64)
    rejection_reason = serializers.CharField(required=False, allow_blank=True)
