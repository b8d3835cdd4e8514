from django.urls import path

from .api_views import WebhookApi

urlpatterns = [
    path("<slug:provider>/", WebhookApi.as_view(), name="webhooks"),
]
