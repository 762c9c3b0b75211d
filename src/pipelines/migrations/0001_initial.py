import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("companies", "0001_initial"),
        ("contacts", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Pipeline",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=255)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="pipelines", to="companies.company")),
            ],
            options={
                "ordering": ["created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("company", "name"), name="uniq_pipeline_name_per_company"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PipelineStage",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=120)),
                ("order", models.IntegerField(default=0)),
                ("position", models.PositiveIntegerField(default=0)),
                ("pipeline", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="stages", to="pipelines.pipeline")),
            ],
            options={
                "ordering": ["pipeline", "order", "position"],
                "indexes": [models.Index(fields=["pipeline", "order", "position"], name="stage_pipeline_order_idx")],
            },
        ),
        migrations.CreateModel(
            name="Deal",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("title", models.CharField(max_length=255)),
                ("amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14, validators=[django.core.validators.MinValueValidator(Decimal("0.00"))])),
                ("status", models.CharField(choices=[("open", "Ouvert"), ("won", "Gagne"), ("lost", "Perdu")], db_index=True, default="open", max_length=10)),
                ("probability", models.PositiveSmallIntegerField(default=0, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ("close_date", models.DateField(blank=True, null=True)),
                ("version", models.PositiveIntegerField(default=1)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="deals", to="companies.company")),
                ("contact", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="deals", to="contacts.contact")),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="deals_owned", to=settings.AUTH_USER_MODEL)),
                ("pipeline", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="deals", to="pipelines.pipeline")),
                ("stage", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="deals", to="pipelines.pipelinestage")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["company", "pipeline", "status"], name="deal_company_pipeline_idx"),
                    models.Index(fields=["company", "contact"], name="deal_company_contact_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DealStageHistory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sequence", models.PositiveIntegerField()),
                ("entered_at", models.DateTimeField()),
                ("exited_at", models.DateTimeField(blank=True, null=True)),
                ("deal", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="stage_history", to="pipelines.deal")),
                ("stage", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="history_entries", to="pipelines.pipelinestage")),
            ],
            options={
                "verbose_name_plural": "deal stage history",
                "ordering": ["deal", "sequence"],
                "constraints": [
                    models.UniqueConstraint(fields=("deal", "sequence"), name="uniq_stage_history_sequence"),
                    models.UniqueConstraint(condition=models.Q(("exited_at__isnull", True)), fields=("deal",), name="uniq_open_stage_history_per_deal"),
                ],
            },
        ),
    ]
