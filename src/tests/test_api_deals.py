"""Tests for /api/v1/deals/ endpoints."""
import pytest

from pipelines import services
from pipelines.models import Deal, DealStageHistory

URL = "/api/v1/deals/"


def _detail(deal):
    return f"{URL}{deal.pk}/"


@pytest.mark.django_db
class TestDealRead:
    def test_list_is_paginated(self, member_client, deal):
        resp = member_client.get(URL)
        assert resp.status_code == 200
        assert resp.data["count"] == 1
        assert resp.data["results"][0]["title"] == "Licences 2024"

    def test_filter_by_stage(self, member_client, company, deal, stages):
        services.transition_stage(company, deal.pk, stages[1].pk)

        resp = member_client.get(URL, {"stage": str(stages[0].pk)})
        assert resp.data["count"] == 0
        resp = member_client.get(URL, {"stage": str(stages[1].pk)})
        assert resp.data["count"] == 1

    def test_filter_by_status(self, member_client, company, deal):
        services.update_deal_fields(company, deal.pk, {"status": "won"})
        assert member_client.get(URL, {"status": "open"}).data["count"] == 0
        assert member_client.get(URL, {"status": "won"}).data["count"] == 1

    def test_retrieve_includes_stage_history(self, member_client, company, deal, stages):
        services.transition_stage(company, deal.pk, stages[2].pk)

        resp = member_client.get(_detail(deal))
        assert resp.status_code == 200
        history = resp.data["stage_history"]
        assert [entry["sequence"] for entry in history] == [1, 2]
        assert [entry["stage_name"] for entry in history] == ["Lead", "Proposal"]
        assert history[0]["exited_at"] is not None
        assert history[1]["exited_at"] is None
        assert resp.data["stage"] == stages[2].pk
        assert resp.data["version"] == 2

    def test_other_company_is_404(self, outsider_client, deal):
        resp = outsider_client.get(_detail(deal))
        assert resp.status_code == 404

    def test_other_company_list_is_empty(self, outsider_client, deal):
        resp = outsider_client.get(URL)
        assert resp.data["count"] == 0


@pytest.mark.django_db
class TestDealCreate:
    def test_create_defaults_to_first_stage(self, member_client, member_user, contact, pipeline, stages):
        resp = member_client.post(URL, {
            "contact": str(contact.pk),
            "title": "Nouveau contrat",
            "amount": "900.00",
        }, format="json")
        assert resp.status_code == 201, resp.data
        assert resp.data["stage"] == stages[0].pk
        assert resp.data["pipeline"] == pipeline.pk
        assert resp.data["owner"] == member_user.pk
        assert len(resp.data["stage_history"]) == 1

    def test_create_at_explicit_stage(self, member_client, contact, pipeline, stages):
        resp = member_client.post(URL, {
            "contact": str(contact.pk),
            "pipeline": str(pipeline.pk),
            "stage": str(stages[1].pk),
            "title": "Qualifie",
        }, format="json")
        assert resp.status_code == 201, resp.data
        assert resp.data["stage_name"] == "Qualified"

    def test_unknown_contact_is_404(self, member_client, pipeline):
        resp = member_client.post(URL, {
            "contact": "00000000-0000-0000-0000-000000000000",
            "title": "Orphelin",
        }, format="json")
        assert resp.status_code == 404

    def test_contact_of_other_company_is_404(self, member_client, other_contact, pipeline):
        resp = member_client.post(URL, {"contact": str(other_contact.pk), "title": "Fuite"}, format="json")
        assert resp.status_code == 404

    def test_stage_outside_pipeline_is_400(self, member_client, company, contact, pipeline):
        other = services.create_pipeline(company, "Autre", ["Debut"])
        resp = member_client.post(URL, {
            "contact": str(contact.pk),
            "pipeline": str(pipeline.pk),
            "stage": str(other.first_stage().pk),
            "title": "Mauvaise etape",
        }, format="json")
        assert resp.status_code == 400
        assert not Deal.objects.exists()

    def test_no_pipeline_is_404(self, member_client, contact):
        resp = member_client.post(URL, {"contact": str(contact.pk), "title": "Rien"}, format="json")
        assert resp.status_code == 404

    def test_missing_title_is_400(self, member_client, contact, pipeline):
        resp = member_client.post(URL, {"contact": str(contact.pk)}, format="json")
        assert resp.status_code == 400


@pytest.mark.django_db
class TestDealUpdate:
    def test_patch_fields(self, member_client, deal):
        resp = member_client.patch(_detail(deal), {"title": "Renomme", "probability": 60}, format="json")
        assert resp.status_code == 200, resp.data
        assert resp.data["title"] == "Renomme"
        assert resp.data["probability"] == 60
        assert resp.data["version"] == 1

    def test_patch_stage_goes_through_transition(self, member_client, deal, stages):
        resp = member_client.patch(_detail(deal), {"stage": str(stages[1].pk)}, format="json")
        assert resp.status_code == 200, resp.data
        assert resp.data["stage"] == stages[1].pk
        assert resp.data["version"] == 2
        assert DealStageHistory.objects.filter(deal=deal).count() == 2

    def test_patch_invalid_stage_rolls_back_other_fields(self, member_client, company, deal):
        other = services.create_pipeline(company, "Autre", ["Debut"])
        resp = member_client.patch(_detail(deal), {
            "title": "Ne doit pas changer",
            "stage": str(other.first_stage().pk),
        }, format="json")
        assert resp.status_code == 400
        deal.refresh_from_db()
        assert deal.title == "Licences 2024"

    def test_invalid_probability_is_400(self, member_client, deal):
        resp = member_client.patch(_detail(deal), {"probability": 150}, format="json")
        assert resp.status_code == 400

    def test_other_company_is_404(self, outsider_client, deal):
        resp = outsider_client.patch(_detail(deal), {"title": "Pirate"}, format="json")
        assert resp.status_code == 404


@pytest.mark.django_db
class TestMoveStage:
    def test_move(self, member_client, deal, stages):
        resp = member_client.post(f"{_detail(deal)}move-stage/", {"stage_id": str(stages[2].pk)}, format="json")
        assert resp.status_code == 200, resp.data
        assert resp.data["stage"] == stages[2].pk
        assert len(resp.data["stage_history"]) == 2

    def test_move_to_current_stage_is_noop(self, member_client, deal, stages):
        resp = member_client.post(f"{_detail(deal)}move-stage/", {"stage_id": str(stages[0].pk)}, format="json")
        assert resp.status_code == 200
        assert resp.data["version"] == 1
        assert len(resp.data["stage_history"]) == 1

    def test_unknown_stage_is_400(self, member_client, deal):
        resp = member_client.post(
            f"{_detail(deal)}move-stage/",
            {"stage_id": "00000000-0000-0000-0000-000000000000"},
            format="json",
        )
        assert resp.status_code == 400

    def test_missing_stage_is_400(self, member_client, deal):
        resp = member_client.post(f"{_detail(deal)}move-stage/", {}, format="json")
        assert resp.status_code == 400

    def test_unknown_deal_is_404(self, member_client, stages):
        resp = member_client.post(
            f"{URL}00000000-0000-0000-0000-000000000000/move-stage/",
            {"stage_id": str(stages[1].pk)},
            format="json",
        )
        assert resp.status_code == 404

    def test_corrupted_history_is_500(self, member_client, deal, stages):
        Deal.objects.filter(pk=deal.pk).update(stage=stages[2])
        resp = member_client.post(f"{_detail(deal)}move-stage/", {"stage_id": str(stages[1].pk)}, format="json")
        assert resp.status_code == 500
        assert "detail" in resp.data


@pytest.mark.django_db
class TestDealDelete:
    def test_member_cannot_delete(self, member_client, deal):
        resp = member_client.delete(_detail(deal))
        assert resp.status_code == 403
        assert Deal.objects.filter(pk=deal.pk).exists()

    def test_manager_can_delete(self, manager_client, deal):
        resp = manager_client.delete(_detail(deal))
        assert resp.status_code == 204
        assert not Deal.objects.filter(pk=deal.pk).exists()

    def test_admin_can_delete(self, admin_client, deal):
        resp = admin_client.delete(_detail(deal))
        assert resp.status_code == 204
