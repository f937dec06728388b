from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("document_store", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="fiscaldocumentrecord",
            name="acknowledgment",
            field=models.BinaryField(blank=True, null=True),
        ),
    ]
