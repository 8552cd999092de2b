import bleach
from rest_framework import serializers


class ListQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=100, default=20)
    search = serializers.CharField(required=False, allow_blank=True, max_length=64)
    status = serializers.CharField(required=False, allow_blank=True, max_length=32)


def clean_text(v):
    return bleach.clean((v or '').strip(), strip=True)
