# apps/products/serializers.py
from rest_framework import serializers

from .models import Product


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["public_id", "sku", "name", "unit_price", "tax_rate"]
        read_only_fields = fields
