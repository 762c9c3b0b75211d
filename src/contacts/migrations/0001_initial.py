import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("companies", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Contact",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("first_name", models.CharField(max_length=150)),
                ("last_name", models.CharField(blank=True, default="", max_length=150)),
                ("email", models.EmailField(blank=True, default="", max_length=254)),
                ("phone", models.CharField(blank=True, default="", max_length=30)),
                ("company_name", models.CharField(blank=True, default="", max_length=255)),
                ("notes", models.TextField(blank=True, default="")),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="contacts", to="companies.company")),
                ("owner", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="contacts_owned", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["last_name", "first_name"],
                "indexes": [models.Index(fields=["company", "email"], name="contact_company_email_idx")],
            },
        ),
        migrations.CreateModel(
            name="Activity",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("type", models.CharField(choices=[("CALL", "Appel"), ("EMAIL", "E-mail"), ("MEETING", "Rendez-vous"), ("TASK", "Tache"), ("NOTE", "Note")], default="TASK", max_length=20)),
                ("subject", models.CharField(max_length=255)),
                ("due_date", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("status", models.CharField(choices=[("OPEN", "A faire"), ("DONE", "Termine")], db_index=True, default="OPEN", max_length=20)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="activities", to="companies.company")),
                ("contact", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="activities", to="contacts.contact")),
                ("owner", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="activities_owned", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name_plural": "activities",
                "ordering": ["due_date", "-created_at"],
                "indexes": [models.Index(fields=["company", "status", "due_date"], name="activity_company_due_idx")],
            },
        ),
    ]
