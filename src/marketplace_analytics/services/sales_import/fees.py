"""Marketplace fee schedule.

Rates are fractions of revenue. The table is immutable at runtime; a new
marketplace is one more entry here, the calculator does not change.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional

from marketplace_analytics.services.sales_import.records import Marketplace

FEE_SCHEDULE_VERSION = "2024.1"


@dataclass(frozen=True)
class MarketplaceFeeProfile:
    marketplace: str
    sale_commission_rate: Decimal
    logistics_rate: Decimal
    storage_rate: Decimal
    surcharge_rate: Optional[Decimal] = None
    version: str = FEE_SCHEDULE_VERSION


DEFAULT_FEE_PROFILES: Mapping[str, MarketplaceFeeProfile] = MappingProxyType(
    {
        Marketplace.WILDBERRIES.value: MarketplaceFeeProfile(
            marketplace=Marketplace.WILDBERRIES.value,
            sale_commission_rate=Decimal("0.05"),
            logistics_rate=Decimal("0.04"),
            storage_rate=Decimal("0.025"),
            surcharge_rate=Decimal("0.023"),  # acquiring
        ),
        Marketplace.OZON.value: MarketplaceFeeProfile(
            marketplace=Marketplace.OZON.value,
            sale_commission_rate=Decimal("0.08"),
            logistics_rate=Decimal("0.035"),
            storage_rate=Decimal("0.02"),
            surcharge_rate=Decimal("0.025"),  # fulfillment
        ),
    }
)
