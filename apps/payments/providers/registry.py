# apps/payments/providers/registry.py
from __future__ import annotations

from typing import Iterable, Mapping

from apps.payments.providers.port import GatewayAdapter


class UnknownGateway(ValueError):
    pass


class GatewayRegistry:
    """
    Адаптеры по имени провайдера. Собирается один раз в composition root
    только из включённых capability-флагами шлюзов.
    """

    def __init__(self, adapters: Mapping[str, GatewayAdapter] | Iterable[GatewayAdapter]):
        if isinstance(adapters, Mapping):
            self._adapters = dict(adapters)
        else:
            self._adapters = {a.name: a for a in adapters}

    def get(self, name: str) -> GatewayAdapter:
        # Без сюрпризов: если провайдер неизвестен или выключен - явно падаем
        try:
            return self._adapters[name]
        except KeyError:
            raise UnknownGateway(f"Unknown payment provider: {name}")

    def enabled_methods(self) -> tuple[str, ...]:
        return tuple(self._adapters)

    def __contains__(self, name: str) -> bool:
        return name in self._adapters
