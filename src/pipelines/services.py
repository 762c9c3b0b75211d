"""Business-logic / service functions for the pipelines app.

Pipelines (the stage definitions of a company) and deals (records moving
through those stages) are only ever mutated through the functions below.
A deal's ``stage`` and ``stage_history`` are owned by
:func:`transition_stage`; generic field updates go through
:func:`update_deal_fields`, which refuses to touch them.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from django.db import IntegrityError, transaction
from django.db.models import F, Prefetch
from django.utils import timezone

from companies.services import create_audit_log
from pipelines.exceptions import (
    ConflictError,
    NotFoundError,
    StageHistoryIntegrityError,
    ValidationError,
)
from pipelines.models import Deal, DealStageHistory, Pipeline, PipelineStage

logger = logging.getLogger("dealflow")

UPDATABLE_DEAL_FIELDS = ("title", "amount", "status", "probability", "close_date")

# Keys that may never be changed through a generic deal update.
PROTECTED_DEAL_FIELDS = frozenset({
    "id",
    "company",
    "company_id",
    "owner",
    "owner_id",
    "contact",
    "contact_id",
    "pipeline",
    "pipeline_id",
    "stage",
    "stage_id",
    "stage_history",
    "version",
})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_uuid(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def _clean_pipeline_name(name) -> str:
    cleaned = name.strip() if isinstance(name, str) else ""
    if not cleaned:
        raise ValidationError("Le nom du pipeline est obligatoire.")
    if len(cleaned) > Pipeline._meta.get_field("name").max_length:
        raise ValidationError("Le nom du pipeline est trop long.")
    return cleaned


def _normalize_stages(stages) -> list[dict[str, Any]]:
    """Trim stage names, drop blank ones and default ``order`` to the index.

    The index is the position in the submitted list, taken before blank
    entries are filtered out.
    """
    if stages is None or isinstance(stages, (str, bytes, Mapping)) or not isinstance(stages, Iterable):
        raise ValidationError("La liste des etapes est obligatoire.")

    normalized = []
    for index, raw in enumerate(stages):
        if isinstance(raw, str):
            raw = {"name": raw}
        if not isinstance(raw, Mapping):
            raise ValidationError("Chaque etape doit etre un objet {name, order}.")
        name = raw.get("name")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            continue
        if len(name) > PipelineStage._meta.get_field("name").max_length:
            raise ValidationError(f"Le nom de l'etape '{name[:30]}...' est trop long.")
        order = raw.get("order")
        if order is None:
            order = index
        elif isinstance(order, bool) or (isinstance(order, float) and not order.is_integer()):
            raise ValidationError("L'ordre d'une etape doit etre un entier.")
        else:
            try:
                order = int(order)
            except (TypeError, ValueError):
                raise ValidationError("L'ordre d'une etape doit etre un entier.")
        normalized.append({"id": raw.get("id"), "name": name, "order": order})

    if not normalized:
        raise ValidationError("Au moins une etape est requise.")
    return normalized


def _pipeline_snapshot(pipeline: Pipeline) -> dict[str, Any]:
    return {
        "name": pipeline.name,
        "stages": [
            {"id": str(stage.pk), "name": stage.name, "order": stage.order}
            for stage in pipeline.ordered_stages()
        ],
    }


def _stage_of_pipeline(pipeline: Pipeline, stage_id) -> PipelineStage | None:
    pk = _as_uuid(stage_id)
    if pk is None:
        return None
    return PipelineStage.objects.filter(pipeline=pipeline, pk=pk).first()


def _clean_deal_fields(values: Mapping[str, Any], *, partial: bool) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}

    if "title" in values or not partial:
        title = values.get("title")
        title = title.strip() if isinstance(title, str) else ""
        if not title:
            raise ValidationError("Le titre de l'affaire est obligatoire.")
        if len(title) > Deal._meta.get_field("title").max_length:
            raise ValidationError("Le titre de l'affaire est trop long.")
        cleaned["title"] = title

    if "amount" in values:
        raw_amount = values["amount"]
        if raw_amount is None or raw_amount == "" or isinstance(raw_amount, bool):
            raise ValidationError("Le montant doit etre un nombre.")
        try:
            amount = Decimal(str(raw_amount))
        except (InvalidOperation, ValueError):
            raise ValidationError("Le montant doit etre un nombre.")
        if not amount.is_finite():
            raise ValidationError("Le montant doit etre un nombre.")
        if amount < 0:
            raise ValidationError("Le montant ne peut pas etre negatif.")
        cleaned["amount"] = amount.quantize(Decimal("0.01"))

    if "status" in values:
        status = values["status"]
        if status not in Deal.Status.values:
            raise ValidationError(
                f"Statut invalide. Valeurs possibles: {', '.join(Deal.Status.values)}."
            )
        cleaned["status"] = status

    if "probability" in values:
        raw_probability = values["probability"]
        if isinstance(raw_probability, bool):
            raise ValidationError("La probabilite doit etre un entier entre 0 et 100.")
        try:
            probability = int(raw_probability)
        except (TypeError, ValueError):
            raise ValidationError("La probabilite doit etre un entier entre 0 et 100.")
        if not 0 <= probability <= 100:
            raise ValidationError("La probabilite doit etre un entier entre 0 et 100.")
        cleaned["probability"] = probability

    if "close_date" in values:
        close_date = values["close_date"]
        if isinstance(close_date, datetime):
            close_date = close_date.date()
        elif isinstance(close_date, str):
            try:
                close_date = date.fromisoformat(close_date) if close_date else None
            except ValueError:
                raise ValidationError("Date de cloture invalide (format AAAA-MM-JJ).")
        elif close_date is not None and not isinstance(close_date, date):
            raise ValidationError("Date de cloture invalide (format AAAA-MM-JJ).")
        cleaned["close_date"] = close_date

    return cleaned


def _check_history(deal: Deal, history: list[DealStageHistory]) -> DealStageHistory:
    """Return the last history entry, or raise if the log is inconsistent."""
    if not history:
        logger.error("Deal %s has an empty stage history", deal.pk)
        raise StageHistoryIntegrityError(
            "L'historique des etapes de cette affaire est vide."
        )

    last = history[-1]
    open_entries = [entry for entry in history if entry.exited_at is None]
    if (
        len(open_entries) > 1
        or (open_entries and open_entries[0].pk != last.pk)
        or last.stage_id != deal.stage_id
    ):
        logger.error(
            "Stage history of deal %s is inconsistent: open_entries=%s last_stage=%s deal_stage=%s",
            deal.pk,
            [entry.sequence for entry in open_entries],
            last.stage_id,
            deal.stage_id,
        )
        raise StageHistoryIntegrityError()
    return last


# ---------------------------------------------------------------------------
# Pipeline definitions
# ---------------------------------------------------------------------------

def list_pipelines(company):
    """Return the company's pipelines, earliest-created first, stages in order."""
    return (
        Pipeline.objects
        .filter(company=company)
        .prefetch_related(
            Prefetch("stages", queryset=PipelineStage.objects.order_by("order", "position")),
        )
        .order_by("created_at", "id")
    )


def get_pipeline(company, pipeline_id, *, for_update: bool = False) -> Pipeline:
    pk = _as_uuid(pipeline_id)
    qs = Pipeline.objects.filter(company=company)
    if for_update:
        qs = qs.select_for_update()
    pipeline = qs.filter(pk=pk).first() if pk else None
    if pipeline is None:
        raise NotFoundError("Pipeline introuvable.")
    return pipeline


@transaction.atomic
def create_pipeline(company, name, stages, *, actor=None) -> Pipeline:
    """Create a pipeline with its initial (non-empty) stage list.

    Parameters
    ----------
    company : companies.models.Company
    name : str
        Trimmed; must be unique within the company.
    stages : list
        ``[{"name": ..., "order": ...}, ...]`` (plain strings are accepted as
        names). ``order`` defaults to the entry's index in the list.

    Raises
    ------
    ValidationError
        Blank name, or no stage left once blank names are dropped.
    ConflictError
        A pipeline with the same name already exists for the company.
    """
    cleaned_name = _clean_pipeline_name(name)
    normalized = _normalize_stages(stages)

    if Pipeline.objects.filter(company=company, name=cleaned_name).exists():
        raise ConflictError(f"Un pipeline nomme '{cleaned_name}' existe deja.")
    try:
        with transaction.atomic():
            pipeline = Pipeline.objects.create(company=company, name=cleaned_name)
    except IntegrityError as exc:
        raise ConflictError(f"Un pipeline nomme '{cleaned_name}' existe deja.") from exc

    PipelineStage.objects.bulk_create([
        PipelineStage(
            pipeline=pipeline,
            name=item["name"],
            order=item["order"],
            position=position,
        )
        for position, item in enumerate(normalized)
    ])

    create_audit_log(
        actor=actor,
        company=company,
        action="PIPELINE_CREATE",
        entity_type="Pipeline",
        entity_id=str(pipeline.pk),
        after=_pipeline_snapshot(pipeline),
    )
    logger.info(
        "Pipeline %s '%s' created with %d stage(s) for company %s",
        pipeline.pk, pipeline.name, len(normalized), company.pk,
    )
    return pipeline


def _replace_stages(pipeline: Pipeline, normalized: list[dict[str, Any]]) -> None:
    existing = {stage.pk: stage for stage in pipeline.stages.all()}
    kept_ids: set[uuid.UUID] = set()
    to_update: list[PipelineStage] = []
    to_create: list[PipelineStage] = []

    for position, item in enumerate(normalized):
        raw_id = item["id"]
        if raw_id in (None, ""):
            to_create.append(
                PipelineStage(
                    pipeline=pipeline,
                    name=item["name"],
                    order=item["order"],
                    position=position,
                )
            )
            continue

        stage_id = _as_uuid(raw_id)
        stage = existing.get(stage_id) if stage_id else None
        if stage is None:
            raise ValidationError(f"L'etape {raw_id} n'appartient pas a ce pipeline.")
        if stage_id in kept_ids:
            raise ValidationError(f"L'etape {raw_id} apparait plusieurs fois.")
        kept_ids.add(stage_id)
        stage.name = item["name"]
        stage.order = item["order"]
        stage.position = position
        to_update.append(stage)

    removed_ids = set(existing) - kept_ids
    if removed_ids:
        referenced = set(
            Deal.objects.filter(stage_id__in=removed_ids).values_list("stage_id", flat=True)
        )
        referenced |= set(
            DealStageHistory.objects.filter(stage_id__in=removed_ids).values_list("stage_id", flat=True)
        )
        if referenced:
            names = sorted(existing[stage_id].name for stage_id in referenced)
            logger.warning(
                "Refused to remove stage(s) %s from pipeline %s: referenced by deals",
                names, pipeline.pk,
            )
            raise ConflictError(
                f"Etape(s) utilisee(s) par des affaires, suppression impossible: {', '.join(names)}."
            )
        PipelineStage.objects.filter(pk__in=removed_ids).delete()

    if to_update:
        PipelineStage.objects.bulk_update(to_update, ["name", "order", "position"])
    if to_create:
        PipelineStage.objects.bulk_create(to_create)


@transaction.atomic
def update_pipeline(company, pipeline_id, *, name=None, stages=None, actor=None) -> Pipeline:
    """Rename a pipeline and/or replace its stage set.

    A blank ``name`` leaves the current name untouched.
    When ``stages`` is given it replaces the whole set: entries carrying the
    ``id`` of an existing stage keep that stage, entries without ``id`` are
    new stages, and stages left out are removed. Removing a stage that any
    deal currently sits in, or has ever passed through, raises
    :class:`ConflictError` and leaves the pipeline untouched.
    """
    pipeline = get_pipeline(company, pipeline_id, for_update=True)
    before = _pipeline_snapshot(pipeline)

    if isinstance(name, str) and not name.strip():
        name = None
    if name is not None:
        cleaned_name = _clean_pipeline_name(name)
        if cleaned_name != pipeline.name:
            duplicate = (
                Pipeline.objects
                .filter(company=company, name=cleaned_name)
                .exclude(pk=pipeline.pk)
                .exists()
            )
            if duplicate:
                raise ConflictError(f"Un pipeline nomme '{cleaned_name}' existe deja.")
            pipeline.name = cleaned_name
            try:
                with transaction.atomic():
                    pipeline.save(update_fields=["name", "updated_at"])
            except IntegrityError as exc:
                raise ConflictError(f"Un pipeline nomme '{cleaned_name}' existe deja.") from exc

    if stages is not None:
        _replace_stages(pipeline, _normalize_stages(stages))
        pipeline.save(update_fields=["updated_at"])

    after = _pipeline_snapshot(pipeline)
    create_audit_log(
        actor=actor,
        company=company,
        action="PIPELINE_UPDATE",
        entity_type="Pipeline",
        entity_id=str(pipeline.pk),
        before=before,
        after=after,
    )
    logger.info("Pipeline %s updated for company %s", pipeline.pk, company.pk)
    return pipeline


@transaction.atomic
def delete_pipeline(company, pipeline_id, *, actor=None) -> None:
    """Delete a pipeline; refused while any deal of the company references it."""
    pipeline = get_pipeline(company, pipeline_id, for_update=True)

    deals_count = Deal.objects.filter(company=company, pipeline=pipeline).count()
    if deals_count:
        logger.warning(
            "Refused to delete pipeline %s: %d deal(s) attached", pipeline.pk, deals_count,
        )
        raise ConflictError("Ce pipeline est utilise par des affaires.")

    before = _pipeline_snapshot(pipeline)
    pipeline_pk = pipeline.pk
    pipeline.delete()

    create_audit_log(
        actor=actor,
        company=company,
        action="PIPELINE_DELETE",
        entity_type="Pipeline",
        entity_id=str(pipeline_pk),
        before=before,
    )
    logger.info("Pipeline %s deleted for company %s", pipeline_pk, company.pk)


# ---------------------------------------------------------------------------
# Deals
# ---------------------------------------------------------------------------

def list_deals(company, *, contact=None, pipeline=None, stage=None, status=None, owner=None):
    qs = (
        Deal.objects
        .filter(company=company)
        .select_related("owner", "contact", "pipeline", "stage")
        .order_by("-created_at")
    )
    if contact is not None:
        qs = qs.filter(contact=contact)
    if pipeline is not None:
        qs = qs.filter(pipeline=pipeline)
    if stage is not None:
        qs = qs.filter(stage=stage)
    if status is not None:
        qs = qs.filter(status=status)
    if owner is not None:
        qs = qs.filter(owner=owner)
    return qs


def get_deal(company, deal_id, *, for_update: bool = False) -> Deal:
    pk = _as_uuid(deal_id)
    qs = Deal.objects.filter(company=company)
    if for_update:
        qs = qs.select_for_update()
    deal = qs.filter(pk=pk).first() if pk else None
    if deal is None:
        raise NotFoundError("Affaire introuvable.")
    return deal


@transaction.atomic
def create_deal(
    company,
    *,
    owner,
    contact,
    title,
    pipeline_id=None,
    stage_id=None,
    amount=Decimal("0.00"),
    status=Deal.Status.OPEN,
    probability=0,
    close_date=None,
    actor=None,
    now: datetime | None = None,
) -> Deal:
    """Create a deal and seed its stage history with one open entry.

    The pipeline is ``pipeline_id`` when given, else the company's
    earliest-created pipeline. The stage is ``stage_id`` when given, else the
    pipeline's first stage by ``(order, position)``.

    Raises
    ------
    NotFoundError
        No pipeline could be resolved for the company.
    ValidationError
        The stage is not part of the resolved pipeline, or a field is invalid.
    """
    if pipeline_id not in (None, ""):
        pipeline = get_pipeline(company, pipeline_id, for_update=True)
    else:
        pipeline = (
            Pipeline.objects
            .select_for_update()
            .filter(company=company)
            .order_by("created_at", "id")
            .first()
        )
        if pipeline is None:
            raise NotFoundError("Aucun pipeline n'est configure pour cette entreprise.")

    if stage_id not in (None, ""):
        stage = _stage_of_pipeline(pipeline, stage_id)
        if stage is None:
            raise ValidationError("L'etape n'appartient pas au pipeline.")
    else:
        stage = pipeline.first_stage()
        if stage is None:
            raise ValidationError("Le pipeline ne contient aucune etape.")

    if contact is None or contact.company_id != company.pk:
        raise ValidationError("Le contact doit appartenir a la meme entreprise.")

    fields = _clean_deal_fields(
        {
            "title": title,
            "amount": amount,
            "status": status,
            "probability": probability,
            "close_date": close_date,
        },
        partial=False,
    )
    entered_at = now or timezone.now()

    deal = Deal.objects.create(
        company=company,
        owner=owner,
        contact=contact,
        pipeline=pipeline,
        stage=stage,
        **fields,
    )
    DealStageHistory.objects.create(deal=deal, stage=stage, sequence=1, entered_at=entered_at)

    create_audit_log(
        actor=actor or owner,
        company=company,
        action="DEAL_CREATE",
        entity_type="Deal",
        entity_id=str(deal.pk),
        after={
            "pipeline_id": str(pipeline.pk),
            "stage_id": str(stage.pk),
            **{key: _jsonable(value) for key, value in fields.items()},
        },
    )
    logger.info(
        "Deal %s created in pipeline %s at stage %s by %s",
        deal.pk, pipeline.pk, stage.pk, owner,
    )
    return deal


@transaction.atomic
def transition_stage(company, deal_id, new_stage_id, *, actor=None, now: datetime | None = None) -> Deal:
    """Move a deal to another stage of its pipeline.

    The deal and pipeline rows are locked for the duration of the
    transaction, so concurrent transitions on the same deal are serialized
    and a concurrent pipeline update cannot remove the target stage under
    us. The deal's ``(stage, version)`` is additionally compare-and-set.

    Moving to the current stage is a no-op and returns the deal unchanged.
    """
    deal = get_deal(company, deal_id, for_update=True)
    pipeline = Pipeline.objects.select_for_update().get(pk=deal.pipeline_id)

    new_stage = _stage_of_pipeline(pipeline, new_stage_id)
    if new_stage is None:
        raise ValidationError("L'etape n'appartient pas au pipeline de l'affaire.")
    if new_stage.pk == deal.stage_id:
        return deal

    moved_at = now or timezone.now()
    history = list(deal.stage_history.select_for_update().order_by("sequence"))
    last = _check_history(deal, history)
    old_stage_id = deal.stage_id

    claimed = Deal.objects.filter(
        pk=deal.pk,
        stage_id=old_stage_id,
        version=deal.version,
    ).update(
        stage=new_stage,
        version=F("version") + 1,
        updated_at=timezone.now(),
    )
    if claimed != 1:
        raise ConflictError("L'affaire a ete modifiee entre-temps, veuillez reessayer.")

    if last.exited_at is None:
        closed = DealStageHistory.objects.filter(
            pk=last.pk,
            exited_at__isnull=True,
        ).update(exited_at=moved_at)
        if closed != 1:
            raise ConflictError("L'affaire a ete modifiee entre-temps, veuillez reessayer.")

    DealStageHistory.objects.create(
        deal=deal,
        stage=new_stage,
        sequence=last.sequence + 1,
        entered_at=moved_at,
    )
    deal.refresh_from_db()

    create_audit_log(
        actor=actor,
        company=company,
        action="DEAL_TRANSITION_STAGE",
        entity_type="Deal",
        entity_id=str(deal.pk),
        before={"stage_id": str(old_stage_id)},
        after={"stage_id": str(new_stage.pk)},
    )
    logger.info(
        "Deal %s moved from stage %s to %s (version %s)",
        deal.pk, old_stage_id, new_stage.pk, deal.version,
    )
    return deal


@transaction.atomic
def update_deal_fields(company, deal_id, fields: Mapping[str, Any], *, actor=None) -> Deal:
    """Partially update the non-stage fields of a deal.

    Only ``title``, ``amount``, ``status``, ``probability`` and
    ``close_date`` are accepted; stage changes must go through
    :func:`transition_stage`.
    """
    forbidden = sorted(set(fields) & PROTECTED_DEAL_FIELDS)
    if forbidden:
        raise ValidationError(
            f"Champ(s) non modifiable(s) par cette operation: {', '.join(forbidden)}."
        )
    unknown = sorted(set(fields) - set(UPDATABLE_DEAL_FIELDS))
    if unknown:
        raise ValidationError(f"Champ(s) inconnu(s): {', '.join(unknown)}.")

    deal = get_deal(company, deal_id, for_update=True)
    cleaned = _clean_deal_fields(fields, partial=True)
    if not cleaned:
        return deal

    before = {key: _jsonable(getattr(deal, key)) for key in cleaned}
    for key, value in cleaned.items():
        setattr(deal, key, value)
    deal.save(update_fields=[*cleaned, "updated_at"])

    create_audit_log(
        actor=actor,
        company=company,
        action="DEAL_UPDATE",
        entity_type="Deal",
        entity_id=str(deal.pk),
        before=before,
        after={key: _jsonable(value) for key, value in cleaned.items()},
    )
    logger.info("Deal %s updated: %s", deal.pk, ", ".join(cleaned))
    return deal


@transaction.atomic
def delete_deal(company, deal_id, *, actor=None) -> None:
    deal = get_deal(company, deal_id, for_update=True)
    deal_pk = deal.pk
    before = {
        "title": deal.title,
        "pipeline_id": str(deal.pipeline_id),
        "stage_id": str(deal.stage_id),
        "status": deal.status,
    }
    deal.delete()

    create_audit_log(
        actor=actor,
        company=company,
        action="DEAL_DELETE",
        entity_type="Deal",
        entity_id=str(deal_pk),
        before=before,
    )
    logger.info("Deal %s deleted for company %s", deal_pk, company.pk)
