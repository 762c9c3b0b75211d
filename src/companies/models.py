"""Models for the companies app (tenants and audit trail)."""
from django.conf import settings
from django.db import models

from core.models import TimeStampedModel


class Company(TimeStampedModel):
    """Tenant scope: every CRM record belongs to exactly one company."""

    name = models.CharField("nom", max_length=255)
    domain = models.CharField(
        "domaine",
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Domaine e-mail principal, en minuscules.",
    )
    is_active = models.BooleanField("actif", default=True)

    class Meta:
        ordering = ["name"]
        verbose_name = "Entreprise"
        verbose_name_plural = "Entreprises"

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if self.domain:
            self.domain = self.domain.strip().lower()
        else:
            self.domain = None
        super().save(*args, **kwargs)


class AuditLog(models.Model):
    """Immutable log of every significant action on CRM records."""

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_logs",
    )
    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name="audit_logs",
    )
    action = models.CharField(max_length=100)
    entity_type = models.CharField(max_length=100, db_index=True)
    entity_id = models.CharField(max_length=255)
    before_json = models.JSONField(null=True, blank=True)
    after_json = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Journal d'audit"
        verbose_name_plural = "Journaux d'audit"
        indexes = [
            models.Index(fields=["company", "created_at"], name="audit_company_created_idx"),
            models.Index(fields=["action", "created_at"], name="audit_action_created_idx"),
        ]

    def __str__(self):
        return f"[{self.created_at}] {self.action} on {self.entity_type} #{self.entity_id}"
