"""
URL configuration for core project.

The `urlpatterns` list routes URLs to views. For more information please see:
    https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""
from django.urls import path, include
from core.views import HealthView

urlpatterns = [
    path('health', HealthView.as_view(), name='health'),
    path("api/v1/auth/", include("config.users.urls")),
    path("api/v1/", include("apps.products.urls")),
    path("api/v1/checkout/", include("apps.checkout.urls")),
    path("api/v1/", include("apps.orders.urls")),
    path("webhooks/", include("apps.webhooks.urls")),
]
