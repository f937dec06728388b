from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="FiscalDocumentRecord",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(max_length=64)),
                ("document_type", models.CharField(max_length=20)),
                ("series", models.CharField(max_length=4)),
                ("number", models.PositiveIntegerField()),
                ("issuer_tax_id", models.CharField(max_length=15)),
                ("recipient_tax_id", models.CharField(max_length=15)),
                ("recipient_name", models.CharField(max_length=255)),
                ("currency", models.CharField(max_length=3)),
                ("line_items", models.JSONField(default=list)),
                ("totals", models.JSONField(default=dict)),
                ("shipment", models.JSONField(blank=True, null=True)),
                ("state", models.CharField(max_length=20)),
                ("signed_payload", models.BinaryField(blank=True, null=True)),
                ("content_hash", models.CharField(blank=True, max_length=64, null=True)),
                ("authority_reference_id", models.CharField(blank=True, max_length=255, null=True)),
                ("last_error", models.TextField(blank=True, null=True)),
                ("related_document_id", models.CharField(blank=True, max_length=64, null=True)),
                ("attempt_count", models.PositiveIntegerField(default=0)),
                ("chain_attempts", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField()),
                ("updated_at", models.DateTimeField()),
            ],
            options={
                "db_table": "fiscal_documents",
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="SubmissionAttemptRecord",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("document_id", models.CharField(max_length=64)),
                ("attempt_number", models.PositiveIntegerField()),
                ("started_at", models.DateTimeField()),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                ("outcome", models.CharField(max_length=10)),
                ("authority_code", models.CharField(blank=True, max_length=20, null=True)),
                ("authority_message", models.TextField(blank=True, null=True)),
            ],
            options={
                "db_table": "fiscal_submission_attempts",
                "ordering": ["document_id", "attempt_number"],
            },
        ),
        migrations.CreateModel(
            name="SeriesCounter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("tenant_id", models.CharField(max_length=64)),
                ("series", models.CharField(max_length=4)),
                ("last_number", models.PositiveIntegerField(default=0)),
            ],
            options={
                "db_table": "fiscal_series_counters",
            },
        ),
        migrations.AddIndex(
            model_name="fiscaldocumentrecord",
            index=models.Index(fields=["tenant_id", "state"], name="idx_fdoc_tenant_state"),
        ),
        migrations.AddConstraint(
            model_name="fiscaldocumentrecord",
            constraint=models.UniqueConstraint(
                fields=("tenant_id", "series", "number"),
                name="uq_fiscal_doc_series_number",
            ),
        ),
        migrations.AddConstraint(
            model_name="fiscaldocumentrecord",
            constraint=models.UniqueConstraint(
                condition=models.Q(related_document_id__isnull=False),
                fields=("related_document_id",),
                name="uq_fiscal_doc_related",
            ),
        ),
        migrations.AddConstraint(
            model_name="submissionattemptrecord",
            constraint=models.UniqueConstraint(
                fields=("document_id", "attempt_number"),
                name="uq_fiscal_attempt_number",
            ),
        ),
        migrations.AddConstraint(
            model_name="seriescounter",
            constraint=models.UniqueConstraint(
                fields=("tenant_id", "series"),
                name="uq_fiscal_series_counter",
            ),
        ),
    ]
