"""Tests for deal creation, stage transitions and generic deal updates."""
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django.db.models import F

from companies.models import AuditLog
from pipelines import services
from pipelines.exceptions import (
    ConflictError,
    NotFoundError,
    StageHistoryIntegrityError,
    ValidationError,
)
from pipelines.models import Deal, DealStageHistory

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=dt_timezone.utc)


def _history(deal):
    return list(DealStageHistory.objects.filter(deal=deal).order_by("sequence"))


@pytest.mark.django_db
class TestCreateDeal:
    def test_starts_at_first_stage_with_one_open_entry(self, deal, stages):
        lead = stages[0]
        assert deal.stage == lead
        assert deal.version == 1
        assert deal.amount == Decimal("1500.00")

        history = _history(deal)
        assert len(history) == 1
        assert history[0].sequence == 1
        assert history[0].stage == lead
        assert history[0].entered_at == T0
        assert history[0].exited_at is None

    def test_defaults_to_earliest_pipeline(self, company, member_user, contact, pipeline):
        services.create_pipeline(company, "Autre", ["Debut"])
        deal = services.create_deal(company, owner=member_user, contact=contact, title="Sans pipeline")
        assert deal.pipeline == pipeline

    def test_explicit_stage(self, company, member_user, contact, pipeline, stages):
        proposal = stages[2]
        deal = services.create_deal(
            company,
            owner=member_user,
            contact=contact,
            title="Directe",
            pipeline_id=pipeline.pk,
            stage_id=proposal.pk,
        )
        assert deal.stage == proposal
        assert _history(deal)[0].stage == proposal

    def test_stage_of_another_pipeline_rejected(self, company, member_user, contact, pipeline):
        other = services.create_pipeline(company, "Autre", ["Debut"])
        with pytest.raises(ValidationError):
            services.create_deal(
                company,
                owner=member_user,
                contact=contact,
                title="Mauvaise etape",
                pipeline_id=pipeline.pk,
                stage_id=other.first_stage().pk,
            )
        assert not Deal.objects.exists()

    def test_no_pipeline_configured(self, company, member_user, contact):
        with pytest.raises(NotFoundError):
            services.create_deal(company, owner=member_user, contact=contact, title="Rien")

    def test_unknown_pipeline(self, company, member_user, contact, pipeline):
        with pytest.raises(NotFoundError):
            services.create_deal(
                company,
                owner=member_user,
                contact=contact,
                title="Inconnu",
                pipeline_id="00000000-0000-0000-0000-000000000000",
            )

    def test_contact_of_another_company_rejected(self, company, member_user, other_contact, pipeline):
        with pytest.raises(ValidationError):
            services.create_deal(company, owner=member_user, contact=other_contact, title="Fuite")

    def test_blank_title_rejected(self, company, member_user, contact, pipeline):
        with pytest.raises(ValidationError):
            services.create_deal(company, owner=member_user, contact=contact, title="  ")

    def test_negative_amount_rejected(self, company, member_user, contact, pipeline):
        with pytest.raises(ValidationError):
            services.create_deal(
                company, owner=member_user, contact=contact, title="Negatif", amount="-1",
            )


@pytest.mark.django_db
class TestTransitionStage:
    def test_history_follows_each_move(self, company, deal, stages):
        lead, qualified, proposal = stages
        t1 = T0 + timedelta(days=1)
        t2 = T0 + timedelta(days=3)

        services.transition_stage(company, deal.pk, qualified.pk, now=t1)
        moved = services.transition_stage(company, deal.pk, proposal.pk, now=t2)

        assert moved.stage == proposal
        assert moved.version == 3
        history = _history(deal)
        assert [(e.sequence, e.stage_id) for e in history] == [
            (1, lead.pk),
            (2, qualified.pk),
            (3, proposal.pk),
        ]
        assert [e.entered_at for e in history] == [T0, t1, t2]
        assert [e.exited_at for e in history] == [t1, t2, None]

    def test_exactly_one_open_entry_and_it_matches_the_deal(self, company, deal, stages):
        services.transition_stage(company, deal.pk, stages[1].pk)
        services.transition_stage(company, deal.pk, stages[0].pk)

        deal.refresh_from_db()
        open_entries = DealStageHistory.objects.filter(deal=deal, exited_at__isnull=True)
        assert open_entries.count() == 1
        assert open_entries.get().stage_id == deal.stage_id
        assert _history(deal)[-1].exited_at is None

    def test_moving_to_current_stage_is_noop(self, company, deal, stages):
        result = services.transition_stage(company, deal.pk, stages[0].pk, now=T0 + timedelta(days=2))
        assert result.version == 1
        history = _history(deal)
        assert len(history) == 1
        assert history[0].exited_at is None
        assert not AuditLog.objects.filter(action="DEAL_TRANSITION_STAGE").exists()

    def test_backward_move_allowed(self, company, deal, stages):
        services.transition_stage(company, deal.pk, stages[2].pk)
        moved = services.transition_stage(company, deal.pk, stages[0].pk)
        assert moved.stage == stages[0]
        assert len(_history(deal)) == 3

    def test_stage_outside_pipeline_rejected(self, company, deal):
        other = services.create_pipeline(company, "Autre", ["Debut"])
        with pytest.raises(ValidationError):
            services.transition_stage(company, deal.pk, other.first_stage().pk)

        deal.refresh_from_db()
        assert deal.version == 1
        assert len(_history(deal)) == 1

    def test_unknown_deal(self, company, stages):
        with pytest.raises(NotFoundError):
            services.transition_stage(company, "00000000-0000-0000-0000-000000000000", stages[1].pk)

    def test_deal_of_another_company_is_not_found(self, other_company, deal, stages):
        with pytest.raises(NotFoundError):
            services.transition_stage(other_company, deal.pk, stages[1].pk)

    def test_inconsistent_history_is_reported(self, company, deal, stages):
        Deal.objects.filter(pk=deal.pk).update(stage=stages[2])
        with pytest.raises(StageHistoryIntegrityError):
            services.transition_stage(company, deal.pk, stages[1].pk)

    def test_empty_history_is_reported(self, company, deal, stages):
        DealStageHistory.objects.filter(deal=deal).delete()
        with pytest.raises(StageHistoryIntegrityError):
            services.transition_stage(company, deal.pk, stages[1].pk)

    def test_second_open_entry_refused_by_database(self, deal, stages):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                DealStageHistory.objects.create(
                    deal=deal, stage=stages[1], sequence=2, entered_at=T0,
                )

    def test_stale_version_is_conflict(self, company, deal, stages, monkeypatch):
        real_get_deal = services.get_deal

        def get_deal_then_bump(*args, **kwargs):
            locked = real_get_deal(*args, **kwargs)
            Deal.objects.filter(pk=locked.pk).update(version=F("version") + 1)
            return locked

        monkeypatch.setattr(services, "get_deal", get_deal_then_bump)
        with pytest.raises(ConflictError):
            services.transition_stage(company, deal.pk, stages[1].pk)

        deal.refresh_from_db()
        assert deal.version == 1
        assert deal.stage == stages[0]
        assert DealStageHistory.objects.filter(deal=deal, exited_at__isnull=True).count() == 1
        assert len(_history(deal)) == 1

    def test_entry_closed_concurrently_is_conflict(self, company, deal, stages, monkeypatch):
        real_check = services._check_history

        def check_then_close(locked_deal, history):
            last = real_check(locked_deal, history)
            DealStageHistory.objects.filter(pk=last.pk).update(exited_at=T0 + timedelta(hours=1))
            return last

        monkeypatch.setattr(services, "_check_history", check_then_close)
        with pytest.raises(ConflictError):
            services.transition_stage(company, deal.pk, stages[1].pk)

        deal.refresh_from_db()
        assert deal.version == 1
        assert deal.stage == stages[0]
        history = _history(deal)
        assert len(history) == 1
        assert history[0].exited_at is None

    def test_audit_log_written(self, company, deal, stages, admin_user):
        services.transition_stage(company, deal.pk, stages[1].pk, actor=admin_user)
        log = AuditLog.objects.get(action="DEAL_TRANSITION_STAGE")
        assert log.before_json == {"stage_id": str(stages[0].pk)}
        assert log.after_json == {"stage_id": str(stages[1].pk)}


@pytest.mark.django_db
class TestUpdateDealFields:
    def test_updates_plain_fields(self, company, deal):
        updated = services.update_deal_fields(
            company,
            deal.pk,
            {"title": "Renouvellement", "amount": "2000", "status": "won", "probability": 100},
        )
        assert updated.title == "Renouvellement"
        assert updated.amount == Decimal("2000.00")
        assert updated.status == Deal.Status.WON
        assert updated.probability == 100

    def test_stage_key_rejected(self, company, deal, stages):
        with pytest.raises(ValidationError):
            services.update_deal_fields(company, deal.pk, {"stage": stages[1].pk})
        deal.refresh_from_db()
        assert deal.stage == stages[0]

    def test_history_key_rejected(self, company, deal):
        with pytest.raises(ValidationError):
            services.update_deal_fields(company, deal.pk, {"stage_history": []})

    def test_unknown_key_rejected(self, company, deal):
        with pytest.raises(ValidationError):
            services.update_deal_fields(company, deal.pk, {"colour": "red"})

    def test_history_untouched(self, company, deal):
        before = [(e.pk, e.exited_at) for e in _history(deal)]
        services.update_deal_fields(company, deal.pk, {"status": "lost"})
        assert [(e.pk, e.exited_at) for e in _history(deal)] == before

    @pytest.mark.parametrize("fields", [
        {"probability": 101},
        {"probability": -1},
        {"amount": "-5"},
        {"amount": "abc"},
        {"status": "archived"},
        {"close_date": "31/12/2024"},
    ])
    def test_invalid_values_rejected(self, company, deal, fields):
        with pytest.raises(ValidationError):
            services.update_deal_fields(company, deal.pk, fields)


@pytest.mark.django_db
class TestDeleteDeal:
    def test_removes_deal_and_history(self, company, deal):
        services.delete_deal(company, deal.pk)
        assert not Deal.objects.filter(pk=deal.pk).exists()
        assert not DealStageHistory.objects.filter(deal_id=deal.pk).exists()

    def test_unknown_deal(self, company, db):
        with pytest.raises(NotFoundError):
            services.delete_deal(company, "00000000-0000-0000-0000-000000000000")

    def test_then_pipeline_can_be_deleted(self, company, pipeline, deal):
        services.delete_deal(company, deal.pk)
        services.delete_pipeline(company, pipeline.pk)

    def test_conflict_error_kept_for_pipeline_in_use(self, company, pipeline, deal):
        with pytest.raises(ConflictError):
            services.delete_pipeline(company, pipeline.pk)
