"""Shared fixtures for all tests."""
from datetime import datetime, timezone as dt_timezone

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from companies.models import Company
from contacts.models import Contact
from pipelines import services

User = get_user_model()

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=dt_timezone.utc)


def _client_for(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def company(db):
    return Company.objects.create(name="Acme", domain="acme.test")


@pytest.fixture
def other_company(db):
    return Company.objects.create(name="Globex", domain="globex.test")


@pytest.fixture
def admin_user(company):
    return User.objects.create_user(
        email="admin@acme.test",
        password="TestPass123!",
        first_name="Admin",
        last_name="User",
        company=company,
        role=User.Role.ADMIN,
    )


@pytest.fixture
def manager_user(company):
    return User.objects.create_user(
        email="manager@acme.test",
        password="TestPass123!",
        first_name="Manager",
        last_name="User",
        company=company,
        role=User.Role.MANAGER,
    )


@pytest.fixture
def member_user(company):
    return User.objects.create_user(
        email="member@acme.test",
        password="TestPass123!",
        first_name="Member",
        last_name="User",
        company=company,
        role=User.Role.MEMBER,
    )


@pytest.fixture
def outsider_user(other_company):
    return User.objects.create_user(
        email="admin@globex.test",
        password="TestPass123!",
        company=other_company,
        role=User.Role.ADMIN,
    )


@pytest.fixture
def admin_client(admin_user):
    return _client_for(admin_user)


@pytest.fixture
def manager_client(manager_user):
    return _client_for(manager_user)


@pytest.fixture
def member_client(member_user):
    return _client_for(member_user)


@pytest.fixture
def outsider_client(outsider_user):
    return _client_for(outsider_user)


@pytest.fixture
def contact(company):
    return Contact.objects.create(
        company=company,
        first_name="Jeanne",
        last_name="Martin",
        email="jeanne@client.test",
    )


@pytest.fixture
def other_contact(other_company):
    return Contact.objects.create(company=other_company, first_name="Hors", last_name="Perimetre")


@pytest.fixture
def pipeline(company, admin_user):
    """Three-stage pipeline: Lead (0), Qualified (1), Proposal (2)."""
    return services.create_pipeline(
        company,
        "Ventes",
        [
            {"name": "Lead", "order": 0},
            {"name": "Qualified", "order": 1},
            {"name": "Proposal", "order": 2},
        ],
        actor=admin_user,
    )


@pytest.fixture
def stages(pipeline):
    lead, qualified, proposal = pipeline.ordered_stages()
    return lead, qualified, proposal


@pytest.fixture
def deal(company, member_user, contact, pipeline):
    return services.create_deal(
        company,
        owner=member_user,
        contact=contact,
        title="Licences 2024",
        pipeline_id=pipeline.pk,
        amount="1500.00",
        now=T0,
    )
