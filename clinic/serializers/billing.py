from decimal import Decimal

from rest_framework import serializers


class InvoiceItemSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(min_value=1, default=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)

    def validate(self, attrs):
        # "price" is accepted as an alias
        if attrs.get('unit_price') is None:
            if attrs.get('price') is None:
                raise serializers.ValidationError({'unit_price': ['This field is required.']})
            attrs['unit_price'] = attrs['price']
        attrs.pop('price', None)
        return attrs


class InvoiceCreateSerializer(serializers.Serializer):
    patient_id = serializers.IntegerField(min_value=1)
    items = InvoiceItemSerializer(many=True)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), default=Decimal('0'))
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=4, min_value=Decimal('0'),
                                        max_value=Decimal('1'), required=False)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_items(self, v):
        if not v:
            raise serializers.ValidationError('At least one item is required.')
        return v


class InvoiceUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['pending', 'overdue', 'paid', 'cancelled'], required=False)
    due_date = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    payment_method = serializers.CharField(required=False, max_length=32)


class PaySerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=['cash', 'card', 'transfer', 'insurance'], default='cash')
