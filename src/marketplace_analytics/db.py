"""SQLAlchemy engine and declarative base."""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base

from marketplace_analytics import settings

engine = create_engine(settings.SQLALCHEMY_DATABASE_URL, pool_pre_ping=True)

Base = declarative_base()
