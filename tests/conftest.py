"""
Shared fixtures: an app on in-memory SQLite, a controllable clock, and
factories for organizations, members and patients.
"""

from datetime import datetime, timedelta

import pytest
from flask_jwt_extended import create_access_token

from patientshare import create_app
from patientshare.extensions import db
from patientshare.models import MemberRole, Patient
from patientshare.services import membership_service, patient_service
from patientshare.utils import clock as clock_module


class FrozenClock:
    """Stands in for ``patientshare.utils.clock.utcnow``."""
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def clock(monkeypatch):
    frozen = FrozenClock(datetime(2025, 3, 1, 9, 0, 0))
    monkeypatch.setattr(clock_module, 'utcnow', frozen)
    return frozen


@pytest.fixture
def make_org(app):
    """Creates an organization and returns (organization, owner)."""
    counter = {'n': 0}

    def _make(name=None, org_type='pharmacy'):
        counter['n'] += 1
        n = counter['n']
        owner = membership_service.create_user(f'owner{n}@org{n}.example', 'Owner', f'Number{n}')
        organization = membership_service.create_organization(owner.id, name or f'Org {n}', org_type)
        return organization, owner

    return _make


@pytest.fixture
def add_member(app):
    counter = {'n': 0}

    def _add(organization, role=MemberRole.MEMBER):
        counter['n'] += 1
        n = counter['n']
        user = membership_service.create_user(f'member{n}@{organization.id}.example', 'Member', f'Number{n}')
        user.organization_id = organization.id
        user.role = role
        db.session.commit()
        return user

    return _add


@pytest.fixture
def make_patient(app):
    def _make(user, **overrides):
        details = {
            'first_name': 'Jane',
            'last_name': 'Citizen',
            'date_of_birth': '1950-04-12',
            'phone': '0400 000 000',
            'suburb': 'Fitzroy',
        }
        details.update(overrides)
        patient_id, _ = patient_service.create_patient(user.id, details)
        return db.session.get(Patient, patient_id)

    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        token = create_access_token(identity=str(user.id))
        return {'Authorization': f'Bearer {token}'}

    return _headers


@pytest.fixture
def two_orgs(make_org, add_member):
    """A pharmacy that owns patients and a GP clinic that wants to see them."""
    pharmacy, pharmacy_owner = make_org('Corner Pharmacy', 'pharmacy')
    clinic, clinic_owner = make_org('Northside GP', 'gp_clinic')
    clinic_member = add_member(clinic, MemberRole.MEMBER)
    return {
        'pharmacy': pharmacy,
        'pharmacy_owner': pharmacy_owner,
        'clinic': clinic,
        'clinic_owner': clinic_owner,
        'clinic_member': clinic_member,
    }
