# apps/webhooks/api_views.py
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.webhooks.reconciler import WebhookRejected
from core import container as composition_root

# сегмент URL -> имя провайдера в реестре
PROVIDER_SLUGS = {
    "card": "card",
    "wallet": "wallet",
    "bank-transfer": "bank_transfer",
}


class WebhookApi(APIView):
    """
    POST /webhooks/<provider>/

    Аутентификация - подпись провайдера, поэтому ни сессии, ни JWT, ни CSRF.
    Тело читаем байтами: подпись считается по сырому payload'у.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request, provider: str):
        name = PROVIDER_SLUGS.get(provider)
        if name is None:
            return Response({"received": False, "detail": "Unknown provider."}, status=status.HTTP_404_NOT_FOUND)

        reconciler = composition_root.get_container().reconciler
        try:
            result = reconciler.handle(name, request.body, request.headers)
        except WebhookRejected as exc:
            return Response({"received": False, "detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        body = {"received": True, "result": result.state}
        if result.order_id:
            body["order_id"] = result.order_id
        if result.items:
            body["items"] = [{"result": item.state, "order_id": item.order_id} for item in result.items]
        return Response(body, status=status.HTTP_200_OK)
