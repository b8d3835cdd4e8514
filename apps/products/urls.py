from django.urls import path
from .api_views import ProductListApi

urlpatterns = [
    path("products/", ProductListApi.as_view(), name="products-list"),
]
