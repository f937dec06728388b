"""
Fiscal Document Store - Models
==============================
Row layout behind the RecordStore contract.

RULES:
- Rows are never deleted. VOIDED is a state, not a deletion.
- Number uniqueness per (tenant_id, series) and at most one document per
  related_document_id are enforced here, not only in application code.
- Submission attempts are append-only.

This file contains NO business logic.
"""

from django.db import models


# ══════════════════════════════════════════════════════════════
# FISCAL DOCUMENT
# ══════════════════════════════════════════════════════════════

class FiscalDocumentRecord(models.Model):
    # ── Identity ──────────────────────────────────────────────
    id = models.CharField(max_length=64, primary_key=True)
    tenant_id = models.CharField(max_length=64)
    document_type = models.CharField(max_length=20)
    series = models.CharField(max_length=4)
    number = models.PositiveIntegerField()

    # ── Parties & Amounts ─────────────────────────────────────
    issuer_tax_id = models.CharField(max_length=15)
    recipient_tax_id = models.CharField(max_length=15)
    recipient_name = models.CharField(max_length=255)
    currency = models.CharField(max_length=3)
    line_items = models.JSONField(default=list)
    totals = models.JSONField(default=dict)
    shipment = models.JSONField(null=True, blank=True)

    # ── Lifecycle ─────────────────────────────────────────────
    state = models.CharField(max_length=20)
    signed_payload = models.BinaryField(null=True, blank=True)
    content_hash = models.CharField(max_length=64, null=True, blank=True)
    authority_reference_id = models.CharField(max_length=255, null=True, blank=True)
    acknowledgment = models.BinaryField(null=True, blank=True)
    last_error = models.TextField(null=True, blank=True)
    related_document_id = models.CharField(max_length=64, null=True, blank=True)
    attempt_count = models.PositiveIntegerField(default=0)
    chain_attempts = models.PositiveIntegerField(default=0)

    # ── Temporal ──────────────────────────────────────────────
    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()

    class Meta:
        db_table = "fiscal_documents"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=("tenant_id", "series", "number"),
                name="uq_fiscal_doc_series_number",
            ),
            models.UniqueConstraint(
                fields=("related_document_id",),
                condition=models.Q(related_document_id__isnull=False),
                name="uq_fiscal_doc_related",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant_id", "state"], name="idx_fdoc_tenant_state"),
        ]

    def delete(self, *args, **kwargs):
        raise PermissionError("Fiscal documents are never deleted. Void them instead.")

    def __str__(self):
        return f"[{self.document_type}] {self.series}-{self.number} ({self.state})"


# ══════════════════════════════════════════════════════════════
# SUBMISSION ATTEMPT
# ══════════════════════════════════════════════════════════════

class SubmissionAttemptRecord(models.Model):
    id = models.CharField(max_length=64, primary_key=True)
    document_id = models.CharField(max_length=64)
    attempt_number = models.PositiveIntegerField()
    started_at = models.DateTimeField()
    finished_at = models.DateTimeField(null=True, blank=True)
    outcome = models.CharField(max_length=10)
    authority_code = models.CharField(max_length=20, null=True, blank=True)
    authority_message = models.TextField(null=True, blank=True)

    class Meta:
        db_table = "fiscal_submission_attempts"
        ordering = ["document_id", "attempt_number"]
        constraints = [
            models.UniqueConstraint(
                fields=("document_id", "attempt_number"),
                name="uq_fiscal_attempt_number",
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise PermissionError("Submission attempts are append-only.")
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.document_id} #{self.attempt_number} ({self.outcome})"


# ══════════════════════════════════════════════════════════════
# SERIES COUNTER
# ══════════════════════════════════════════════════════════════

class SeriesCounter(models.Model):
    """Last number handed out per (tenant_id, series). Row-locked on use."""

    tenant_id = models.CharField(max_length=64)
    series = models.CharField(max_length=4)
    last_number = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "fiscal_series_counters"
        constraints = [
            models.UniqueConstraint(
                fields=("tenant_id", "series"),
                name="uq_fiscal_series_counter",
            ),
        ]

    def __str__(self):
        return f"{self.tenant_id}:{self.series} -> {self.last_number}"
