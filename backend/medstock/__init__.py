# backend/medstock/__init__.py
"""
Stock transfer and consistency service for the medical equipment back office.

ORM models live in medstock/apps/*/models.py; importing the apps registers
their tables on Base.metadata for Alembic and create_all().
"""
