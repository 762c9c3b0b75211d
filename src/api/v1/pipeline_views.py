"""ViewSets for pipelines, deals and pipeline analytics."""
from __future__ import annotations

import logging

from django.db import transaction
from django.db.models import Prefetch
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from api.v1.pagination import StandardResultsSetPagination
from api.v1.permissions import IsAdmin, IsCompanyMember, IsManagerOrAdmin, resolve_company
from api.v1.pipeline_serializers import (
    DealCreateSerializer,
    DealMoveStageSerializer,
    DealSerializer,
    DealUpdateSerializer,
    PipelineAnalyticsSerializer,
    PipelineSerializer,
    PipelineWriteSerializer,
)
from contacts.models import Contact
from pipelines import exceptions as pipeline_errors
from pipelines import services as pipeline_services
from pipelines.analytics import compute_analytics
from pipelines.models import DealStageHistory

logger = logging.getLogger("dealflow")

_ERROR_STATUS = (
    (pipeline_errors.ValidationError, status.HTTP_400_BAD_REQUEST),
    (pipeline_errors.NotFoundError, status.HTTP_404_NOT_FOUND),
    (pipeline_errors.ConflictError, status.HTTP_409_CONFLICT),
    (pipeline_errors.StageHistoryIntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def _service_error_response(exc: pipeline_errors.PipelineError) -> Response:
    for error_class, http_status in _ERROR_STATUS:
        if isinstance(exc, error_class):
            return Response({"detail": exc.message}, status=http_status)
    return Response({"detail": exc.message}, status=status.HTTP_400_BAD_REQUEST)


class PipelineViewSet(viewsets.ModelViewSet):
    """Pipeline definitions of the caller's company.

    Reads are open to every member; writes are reserved to administrators.
    """

    serializer_class = PipelineSerializer
    pagination_class = None

    def get_permissions(self):
        base = [IsAuthenticated(), IsCompanyMember()]
        if self.action in ("create", "update", "partial_update", "destroy"):
            return base + [IsAdmin()]
        return base

    def get_queryset(self):
        return pipeline_services.list_pipelines(resolve_company(self.request))

    def create(self, request, *args, **kwargs):
        company = resolve_company(request)
        payload = PipelineWriteSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        try:
            pipeline = pipeline_services.create_pipeline(
                company,
                data.get("name"),
                data.get("stages"),
                actor=request.user,
            )
        except pipeline_errors.PipelineError as exc:
            return _service_error_response(exc)
        return Response(self.get_serializer(pipeline).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        company = resolve_company(request)
        payload = PipelineWriteSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data
        try:
            pipeline = pipeline_services.update_pipeline(
                company,
                kwargs.get("pk"),
                name=data.get("name"),
                stages=data.get("stages"),
                actor=request.user,
            )
        except pipeline_errors.PipelineError as exc:
            return _service_error_response(exc)
        return Response(self.get_serializer(pipeline).data)

    def partial_update(self, request, *args, **kwargs):
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        company = resolve_company(request)
        try:
            pipeline_services.delete_pipeline(company, kwargs.get("pk"), actor=request.user)
        except pipeline_errors.PipelineError as exc:
            return _service_error_response(exc)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get"])
    def analytics(self, request, pk=None):
        company = resolve_company(request)
        try:
            result = compute_analytics(company, pk)
        except pipeline_errors.PipelineError as exc:
            return _service_error_response(exc)
        return Response(PipelineAnalyticsSerializer(result).data)


class DealViewSet(viewsets.ModelViewSet):
    """Deals of the caller's company.

    Stage changes, whether through ``move-stage`` or a ``stage`` key in an
    update payload, always go through the transition service.
    """

    serializer_class = DealSerializer
    pagination_class = StandardResultsSetPagination
    filterset_fields = ["contact", "pipeline", "stage", "status", "owner"]
    search_fields = ["title"]
    ordering_fields = ["created_at", "updated_at", "amount", "probability", "close_date"]

    def get_permissions(self):
        base = [IsAuthenticated(), IsCompanyMember()]
        if self.action == "destroy":
            return base + [IsManagerOrAdmin()]
        return base

    def get_queryset(self):
        company = resolve_company(self.request)
        return pipeline_services.list_deals(company).prefetch_related(
            Prefetch(
                "stage_history",
                queryset=DealStageHistory.objects.select_related("stage").order_by("sequence"),
            ),
        )

    def _render(self, deal_id, http_status=status.HTTP_200_OK):
        deal = self.get_queryset().get(pk=deal_id)
        return Response(self.get_serializer(deal).data, status=http_status)

    def create(self, request, *args, **kwargs):
        company = resolve_company(request)
        payload = DealCreateSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = dict(payload.validated_data)

        contact = Contact.objects.filter(company=company, pk=data.pop("contact")).first()
        if contact is None:
            return Response({"detail": "Contact introuvable."}, status=status.HTTP_404_NOT_FOUND)

        try:
            deal = pipeline_services.create_deal(
                company,
                owner=request.user,
                contact=contact,
                pipeline_id=data.pop("pipeline", None),
                stage_id=data.pop("stage", None),
                actor=request.user,
                **data,
            )
        except pipeline_errors.PipelineError as exc:
            return _service_error_response(exc)
        return self._render(deal.pk, status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        company = resolve_company(request)
        payload = DealUpdateSerializer(data=request.data, partial=True)
        payload.is_valid(raise_exception=True)
        data = dict(payload.validated_data)
        new_stage = data.pop("stage", None)

        try:
            with transaction.atomic():
                if new_stage is not None:
                    pipeline_services.transition_stage(
                        company, kwargs.get("pk"), new_stage, actor=request.user,
                    )
                deal = pipeline_services.update_deal_fields(
                    company, kwargs.get("pk"), data, actor=request.user,
                )
        except pipeline_errors.PipelineError as exc:
            return _service_error_response(exc)
        return self._render(deal.pk)

    def partial_update(self, request, *args, **kwargs):
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        company = resolve_company(request)
        try:
            pipeline_services.delete_deal(company, kwargs.get("pk"), actor=request.user)
        except pipeline_errors.PipelineError as exc:
            return _service_error_response(exc)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="move-stage")
    def move_stage(self, request, pk=None):
        company = resolve_company(request)
        payload = DealMoveStageSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        try:
            deal = pipeline_services.transition_stage(
                company,
                pk,
                payload.validated_data["stage_id"],
                actor=request.user,
            )
        except pipeline_errors.PipelineError as exc:
            if isinstance(exc, pipeline_errors.StageHistoryIntegrityError):
                logger.error("Stage transition failed for deal %s: %s", pk, exc)
            return _service_error_response(exc)
        return self._render(deal.pk)
