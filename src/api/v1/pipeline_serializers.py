"""Serializers for pipeline and deal API endpoints.

Input serializers only check shapes and types; business rules (blank stage
names, stage membership, uniqueness...) are enforced by
``pipelines.services``.
"""
from __future__ import annotations

from rest_framework import serializers

from pipelines.models import Deal, DealStageHistory, Pipeline, PipelineStage


class PipelineStageSerializer(serializers.ModelSerializer):
    class Meta:
        model = PipelineStage
        fields = ["id", "name", "order"]


class PipelineSerializer(serializers.ModelSerializer):
    stages = serializers.SerializerMethodField()

    class Meta:
        model = Pipeline
        fields = ["id", "name", "stages", "created_at", "updated_at"]

    def get_stages(self, obj):
        # Uses the ordered prefetch from list_pipelines() when present.
        stages = sorted(obj.stages.all(), key=lambda stage: (stage.order, stage.position))
        return PipelineStageSerializer(stages, many=True).data


class StageInputSerializer(serializers.Serializer):
    id = serializers.UUIDField(required=False, allow_null=True)
    name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    order = serializers.IntegerField(required=False, allow_null=True)


class PipelineWriteSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, max_length=255)
    stages = serializers.ListField(child=StageInputSerializer(), required=False, allow_empty=True)


class DealStageHistorySerializer(serializers.ModelSerializer):
    stage_name = serializers.CharField(source="stage.name", read_only=True)

    class Meta:
        model = DealStageHistory
        fields = ["sequence", "stage", "stage_name", "entered_at", "exited_at"]


class DealSerializer(serializers.ModelSerializer):
    owner_name = serializers.SerializerMethodField()
    contact_name = serializers.CharField(source="contact.full_name", read_only=True)
    stage_name = serializers.CharField(source="stage.name", read_only=True)
    stage_history = DealStageHistorySerializer(many=True, read_only=True)

    class Meta:
        model = Deal
        fields = [
            "id",
            "title",
            "amount",
            "status",
            "probability",
            "close_date",
            "owner",
            "owner_name",
            "contact",
            "contact_name",
            "pipeline",
            "stage",
            "stage_name",
            "version",
            "stage_history",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_owner_name(self, obj):
        return obj.owner.get_full_name() or obj.owner.email


class DealCreateSerializer(serializers.Serializer):
    contact = serializers.UUIDField()
    pipeline = serializers.UUIDField(required=False, allow_null=True)
    stage = serializers.UUIDField(required=False, allow_null=True)
    title = serializers.CharField(max_length=255)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0, required=False)
    status = serializers.ChoiceField(choices=Deal.Status.choices, required=False)
    probability = serializers.IntegerField(min_value=0, max_value=100, required=False)
    close_date = serializers.DateField(required=False, allow_null=True)


class DealUpdateSerializer(serializers.Serializer):
    """Generic deal update; ``stage`` is routed to the transition service."""

    title = serializers.CharField(max_length=255, required=False)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0, required=False)
    status = serializers.ChoiceField(choices=Deal.Status.choices, required=False)
    probability = serializers.IntegerField(min_value=0, max_value=100, required=False)
    close_date = serializers.DateField(required=False, allow_null=True)
    stage = serializers.UUIDField(required=False)


class DealMoveStageSerializer(serializers.Serializer):
    stage_id = serializers.UUIDField()


class StageDwellSerializer(serializers.Serializer):
    stage_id = serializers.UUIDField()
    stage_name = serializers.CharField()
    avg_days = serializers.DecimalField(max_digits=12, decimal_places=2, coerce_to_string=False)


class PipelineAnalyticsSerializer(serializers.Serializer):
    pipeline_id = serializers.UUIDField()
    won_count = serializers.IntegerField()
    lost_count = serializers.IntegerField()
    win_rate = serializers.DecimalField(max_digits=5, decimal_places=2, coerce_to_string=False)
    per_stage_avg_days = StageDwellSerializer(many=True)
