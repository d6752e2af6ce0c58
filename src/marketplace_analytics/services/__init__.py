"""Service layer for report ingestion and sales analytics."""
