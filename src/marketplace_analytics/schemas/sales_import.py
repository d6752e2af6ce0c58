"""Pydantic schemas for report ingestion jobs and report analytics."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from marketplace_analytics.services.sales_import.records import Marketplace


class IngestionJob(BaseModel):
    """Job descriptor handed to the ingestion pipeline by the task queue."""

    report_id: str = Field(..., min_length=1, description="Report ID the rows belong to")
    file_path: str = Field(..., min_length=1, description="Path of the uploaded file")
    marketplace: Marketplace = Field(..., description="WILDBERRIES or OZON")
    extension: Optional[str] = Field(None, description="Declared file extension; derived from file_path when omitted")

    @field_validator('marketplace', mode='before')
    @classmethod
    def normalize_marketplace(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator('extension')
    @classmethod
    def normalize_extension(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        return v if v.startswith('.') else '.' + v


class TopProduct(BaseModel):
    sku: str
    product_name: str
    quantity: int
    revenue: Decimal
    profit: Decimal
    margin: Decimal

    @field_serializer("revenue", "profit", "margin")
    def serialize_money(self, value: Decimal) -> str:
        return str(value)


class DailySales(BaseModel):
    sale_date: date
    revenue: Decimal
    profit: Decimal
    orders: int

    @field_serializer("revenue", "profit")
    def serialize_money(self, value: Decimal) -> str:
        return str(value)


class ExpenseBreakdown(BaseModel):
    commission: Decimal = Decimal("0.00")
    logistics: Decimal = Decimal("0.00")
    storage: Decimal = Decimal("0.00")
    surcharge: Decimal = Decimal("0.00")
    returns: Decimal = Decimal("0.00")

    @field_serializer("commission", "logistics", "storage", "surcharge", "returns")
    def serialize_money(self, value: Decimal) -> str:
        return str(value)


class ReportAnalytics(BaseModel):
    total_revenue: Decimal = Field(..., description="Sum of row revenue")
    total_profit: Decimal = Field(..., description="Sum of row net profit")
    profit_margin: Decimal = Field(..., description="total_profit / total_revenue * 100, 0 without revenue")
    total_orders: int = Field(..., description="Number of persisted sale rows")
    top_products: List[TopProduct] = Field(default_factory=list)
    daily_sales: List[DailySales] = Field(default_factory=list)
    expenses: ExpenseBreakdown = Field(default_factory=ExpenseBreakdown)

    @field_serializer("total_revenue", "total_profit", "profit_margin")
    def serialize_money(self, value: Decimal) -> str:
        """Serialize Decimal as string."""
        return str(value)
