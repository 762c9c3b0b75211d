"""Models for the deal pipeline engine."""
from __future__ import annotations

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q

from core.models import TimeStampedModel


class Pipeline(TimeStampedModel):
    """Named, ordered list of stages owned by one company."""

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="pipelines",
    )
    name = models.CharField(max_length=255)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "name"],
                name="uniq_pipeline_name_per_company",
            ),
        ]

    def __str__(self):
        return self.name

    def ordered_stages(self) -> list[PipelineStage]:
        return list(self.stages.order_by("order", "position"))

    def first_stage(self) -> PipelineStage | None:
        return self.stages.order_by("order", "position").first()


class PipelineStage(models.Model):
    """One step of a pipeline.

    ``order`` drives board and analytics ordering and need not be contiguous;
    ``position`` is the insertion index and breaks ties between equal orders.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    pipeline = models.ForeignKey(
        Pipeline,
        on_delete=models.CASCADE,
        related_name="stages",
    )
    name = models.CharField(max_length=120)
    order = models.IntegerField(default=0)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["pipeline", "order", "position"]
        indexes = [
            models.Index(fields=["pipeline", "order", "position"], name="stage_pipeline_order_idx"),
        ]

    def __str__(self):
        return f"{self.pipeline.name} / {self.name}"


class Deal(TimeStampedModel):
    """Opportunity tracked through a pipeline.

    ``stage`` is a projection of the last entry of ``stage_history``; it is
    only ever changed by :func:`pipelines.services.transition_stage`.
    """

    class Status(models.TextChoices):
        OPEN = "open", "Ouvert"
        WON = "won", "Gagne"
        LOST = "lost", "Perdu"

    company = models.ForeignKey(
        "companies.Company",
        on_delete=models.CASCADE,
        related_name="deals",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="deals_owned",
    )
    contact = models.ForeignKey(
        "contacts.Contact",
        on_delete=models.PROTECT,
        related_name="deals",
    )
    pipeline = models.ForeignKey(
        Pipeline,
        on_delete=models.PROTECT,
        related_name="deals",
    )
    stage = models.ForeignKey(
        PipelineStage,
        on_delete=models.PROTECT,
        related_name="deals",
    )
    title = models.CharField(max_length=255)
    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.OPEN, db_index=True)
    probability = models.PositiveSmallIntegerField(
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    close_date = models.DateField(null=True, blank=True)
    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["company", "pipeline", "status"], name="deal_company_pipeline_idx"),
            models.Index(fields=["company", "contact"], name="deal_company_contact_idx"),
        ]

    def __str__(self):
        return self.title


class DealStageHistory(models.Model):
    """Append-only record of a deal's occupancy of one stage.

    Once written, the only change ever applied to a row is setting
    ``exited_at``, and only while it is still null.
    """

    deal = models.ForeignKey(
        Deal,
        on_delete=models.CASCADE,
        related_name="stage_history",
    )
    stage = models.ForeignKey(
        PipelineStage,
        on_delete=models.PROTECT,
        related_name="history_entries",
    )
    sequence = models.PositiveIntegerField()
    entered_at = models.DateTimeField()
    exited_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["deal", "sequence"]
        verbose_name_plural = "deal stage history"
        constraints = [
            models.UniqueConstraint(
                fields=["deal", "sequence"],
                name="uniq_stage_history_sequence",
            ),
            models.UniqueConstraint(
                fields=["deal"],
                condition=Q(exited_at__isnull=True),
                name="uniq_open_stage_history_per_deal",
            ),
        ]

    def __str__(self):
        return f"{self.deal_id} #{self.sequence} {self.stage_id}"

    @property
    def is_open(self) -> bool:
        return self.exited_at is None
