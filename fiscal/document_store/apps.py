"""
Fiscal - Document Store App Configuration
=========================================
Database home of fiscal documents, their submission attempts and the
per-series number counters.

This app:
- Declares the tables and their unique constraints
- Is reached only through fiscal.storage.django_store

This app does NOT:
- Decide state transitions (fiscal.lifecycle does)
- Sign, submit or dispatch anything
"""

from django.apps import AppConfig


class DocumentStoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "fiscal.document_store"
    label = "document_store"
    verbose_name = "Fiscal Document Store"
