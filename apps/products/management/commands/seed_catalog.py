from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from apps.products.models import Coupon, Product


class Command(BaseCommand):
    help = "Seed a demo catalog (products, coupons). Safe to run multiple times."

    @transaction.atomic
    def handle(self, *args, **options):
        Product.objects.update_or_create(
            sku="TSHIRT-BLK",
            status=Product.STATUS_ACTIVE,
            defaults={"name": "T-shirt, black", "unit_price": Decimal("49.99"), "tax_rate": Decimal("0.00")},
        )
        Product.objects.update_or_create(
            sku="MUG-WHT",
            status=Product.STATUS_ACTIVE,
            defaults={"name": "Mug, white", "unit_price": Decimal("12.50"), "tax_rate": Decimal("20.00")},
        )

        Coupon.objects.update_or_create(code="WELCOME10", defaults={"kind": Coupon.KIND_PERCENT, "value": Decimal("10")})
        Coupon.objects.update_or_create(code="FIVEOFF", defaults={"kind": Coupon.KIND_FIXED, "value": Decimal("5.00")})

        self.stdout.write(self.style.SUCCESS("Catalog seeded."))
