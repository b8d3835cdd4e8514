import uuid

from django.db import models


class PublicModel(models.Model):
    """
    База для всех доменных моделей: наружу отдаём только public_id (UUID),
    внутренний pk остаётся деталью хранения.
    """

    public_id = models.UUIDField(default=uuid.uuid4, editable=False, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
