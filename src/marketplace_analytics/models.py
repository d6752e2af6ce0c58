from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from .db import Base


class Report(Base):
    __tablename__ = "reports"
    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), index=True, nullable=True)
    file_name = Column(String(255), nullable=False)
    marketplace = Column(String(32), nullable=False)
    upload_date = Column(DateTime(timezone=True), server_default=func.now())
    processed = Column(Boolean, nullable=False, default=False, server_default="false")
    total_revenue = Column(Numeric(18, 2))
    total_profit = Column(Numeric(18, 2))
    profit_margin = Column(Numeric(9, 2))


class SalesData(Base):
    __tablename__ = "sales_data"
    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(
        String(36),
        ForeignKey("reports.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    sku = Column(String(64), index=True, nullable=False)
    product_name = Column(Text, nullable=False)
    sale_date = Column(Date, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(16, 4), nullable=False)
    raw_commission = Column(Numeric(16, 4))
    revenue = Column(Numeric(18, 2), nullable=False)
    commission = Column(Numeric(18, 2), nullable=False)
    logistics = Column(Numeric(18, 2), nullable=False)
    storage = Column(Numeric(18, 2), nullable=False)
    surcharge = Column(Numeric(18, 2), nullable=False)
    net_profit = Column(Numeric(18, 2), nullable=False)
    profit_margin = Column(Numeric(9, 2), nullable=False)

    __table_args__ = (Index("idx_sales_data_report_date", "report_id", "sale_date"),)
