#apps/products/api_views.py
from rest_framework import generics
from rest_framework.permissions import AllowAny

from .models import Product
from .serializers import ProductSerializer


class ProductListApi(generics.ListAPIView):
    """Публичный каталог для витрины/checkout: только активные товары."""

    authentication_classes = []
    permission_classes = [AllowAny]
    serializer_class = ProductSerializer

    def get_queryset(self):
        return Product.objects.filter(status=Product.STATUS_ACTIVE).order_by("id")
