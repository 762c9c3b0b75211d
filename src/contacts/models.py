"""Contacts and activities referenced by deals and the dashboard."""
from django.conf import settings
from django.db import models

from core.models import TimeStampedModel


class Contact(TimeStampedModel):
    """A person a company is selling to."""

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="contacts",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="contacts_owned",
    )
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=30, blank=True, default="")
    company_name = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["last_name", "first_name"]
        indexes = [
            models.Index(fields=["company", "email"], name="contact_company_email_idx"),
        ]

    def __str__(self):
        return self.full_name or self.email

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()


class Activity(TimeStampedModel):
    """Call, meeting, task... logged against a contact or a deal."""

    class Type(models.TextChoices):
        CALL = "CALL", "Appel"
        EMAIL = "EMAIL", "E-mail"
        MEETING = "MEETING", "Rendez-vous"
        TASK = "TASK", "Tache"
        NOTE = "NOTE", "Note"

    class Status(models.TextChoices):
        OPEN = "OPEN", "A faire"
        DONE = "DONE", "Termine"

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="activities",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="activities_owned",
    )
    contact = models.ForeignKey(
        Contact,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="activities",
    )
    deal = models.ForeignKey(
        "pipelines.Deal",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="activities",
    )
    type = models.CharField(max_length=20, choices=Type.choices, default=Type.TASK)
    subject = models.CharField(max_length=255)
    due_date = models.DateTimeField(null=True, blank=True, db_index=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.OPEN, db_index=True)

    class Meta:
        ordering = ["due_date", "-created_at"]
        verbose_name_plural = "activities"
        indexes = [
            models.Index(fields=["company", "status", "due_date"], name="activity_company_due_idx"),
        ]

    def __str__(self):
        return self.subject
