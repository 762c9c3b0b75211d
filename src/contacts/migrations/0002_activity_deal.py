import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("contacts", "0001_initial"),
        ("pipelines", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="activity",
            name="deal",
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="activities", to="pipelines.deal"),
        ),
    ]
