"""
Tests for the grant lifecycle: requests, approval, denial, revocation,
direct grants and the one-open-grant rule.
"""

from datetime import timedelta

import pytest

from patientshare.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from patientshare.extensions import db
from patientshare.models import GrantStatus, MemberRole, TokenAccessGrant
from patientshare.services import grant_service
from patientshare.services.grant_service import RequestOutcome


def _open_grants(patient, user):
    return TokenAccessGrant.query.filter_by(patient_id=patient.id, granted_to_id=user.id, is_active=True).all()


# ── Tests: request_access ────────────────────────────────────────────

def test_request_creates_pending_grant(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])

    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)

    assert result.outcome == RequestOutcome.CREATED
    grant = result.grant
    assert grant.status == GrantStatus.PENDING
    assert grant.granted_to_org_id == two_orgs['clinic'].id
    assert grant.granted_by_org_id == two_orgs['pharmacy'].id
    assert grant.granted_by_id is None
    assert grant.requested_at == clock.now


def test_request_accepts_lowercase_token(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    result = grant_service.request_access(patient.share_token.lower(), two_orgs['clinic_member'].id)
    assert result.outcome == RequestOutcome.CREATED


def test_request_unknown_token(two_orgs):
    with pytest.raises(NotFound):
        grant_service.request_access('PAT-ZZZZ-ZZZZ-ZZZZ', two_orgs['clinic_member'].id)


def test_request_from_same_org_needs_no_grant(two_orgs, make_patient, add_member):
    patient = make_patient(two_orgs['pharmacy_owner'])
    colleague = add_member(two_orgs['pharmacy'])

    result = grant_service.request_access(patient.share_token, colleague.id)

    assert result.outcome == RequestOutcome.SAME_ORGANIZATION
    assert result.grant is None
    assert TokenAccessGrant.query.count() == 0


def test_scenario_repeated_requests_leave_one_pending(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    user = two_orgs['clinic_member']

    first = grant_service.request_access(patient.share_token, user.id)
    second = grant_service.request_access(patient.share_token, user.id)

    assert first.outcome == RequestOutcome.CREATED
    assert second.outcome == RequestOutcome.ALREADY_PENDING
    assert second.grant_id == first.grant_id
    assert len(_open_grants(patient, user)) == 1


def test_request_losing_an_insert_race_returns_the_winner(two_orgs, make_patient, clock, monkeypatch):
    patient = make_patient(two_orgs['pharmacy_owner'])
    user = two_orgs['clinic_member']
    winner = grant_service.request_access(patient.share_token, user.id)

    # The second request reads before the first one's insert is visible
    real_open_grant = grant_service._open_grant
    monkeypatch.setattr(grant_service, '_open_grant',
                        lambda patient_id, user_id, lock=False: None if lock else real_open_grant(patient_id, user_id))

    loser = grant_service.request_access(patient.share_token, user.id)

    assert loser.outcome == RequestOutcome.ALREADY_PENDING
    assert loser.grant_id == winner.grant_id
    assert len(_open_grants(patient, user)) == 1


def test_request_with_live_grant_reports_already_granted(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    user = two_orgs['clinic_member']
    result = grant_service.request_access(patient.share_token, user.id)
    grant_service.approve_access(result.grant_id, two_orgs['pharmacy_owner'].id, ['view'])

    again = grant_service.request_access(patient.share_token, user.id)

    assert again.outcome == RequestOutcome.ALREADY_GRANTED
    assert again.grant_id == result.grant_id


def test_request_after_expiry_supersedes_old_grant(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    user = two_orgs['clinic_member']
    result = grant_service.request_access(patient.share_token, user.id)
    old = grant_service.approve_access(result.grant_id, two_orgs['pharmacy_owner'].id, ['view'],
                                       expires_in_days=7)
    clock.advance(days=8)

    renewed = grant_service.request_access(patient.share_token, user.id)

    assert renewed.outcome == RequestOutcome.CREATED
    assert renewed.grant_id != old.id
    old = db.session.get(TokenAccessGrant, old.id)
    assert old.status == GrantStatus.APPROVED
    assert not old.is_active
    assert old.superseded_at == clock.now


def test_request_after_denial_creates_new_row(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    user = two_orgs['clinic_member']
    first = grant_service.request_access(patient.share_token, user.id)
    grant_service.deny_access(first.grant_id, two_orgs['pharmacy_owner'].id)

    second = grant_service.request_access(patient.share_token, user.id)

    assert second.outcome == RequestOutcome.CREATED
    assert second.grant_id != first.grant_id


# ── Tests: approve / deny / revoke ───────────────────────────────────

def test_approve_sets_permissions_and_approver(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)

    grant = grant_service.approve_access(result.grant_id, two_orgs['pharmacy_owner'].id,
                                         ['view_medications', 'view', 'view'], expires_in_days=30)

    assert grant.status == GrantStatus.APPROVED
    assert grant.permissions == ['view', 'view_medications']
    assert grant.granted_by_id == two_orgs['pharmacy_owner'].id
    assert grant.granted_at == clock.now
    assert grant.expires_at == clock.now + timedelta(days=30)


@pytest.mark.parametrize("permissions", [[], ['edit'], ['teleport']])
def test_approve_rejects_bad_permissions(two_orgs, make_patient, clock, permissions):
    patient = make_patient(two_orgs['pharmacy_owner'])
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)

    with pytest.raises(ValidationError):
        grant_service.approve_access(result.grant_id, two_orgs['pharmacy_owner'].id, permissions)


def test_approve_rejects_past_expiry(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)

    with pytest.raises(ValidationError):
        grant_service.approve_access(result.grant_id, two_orgs['pharmacy_owner'].id, ['view'],
                                     expires_at=clock.now - timedelta(minutes=1))


def test_plain_member_cannot_approve(two_orgs, make_patient, add_member, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)
    member = add_member(two_orgs['pharmacy'], MemberRole.MEMBER)

    with pytest.raises(Forbidden):
        grant_service.approve_access(result.grant_id, member.id, ['view'])


def test_requesting_org_cannot_approve_its_own_request(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)

    with pytest.raises(Forbidden):
        grant_service.approve_access(result.grant_id, two_orgs['clinic_owner'].id, ['view'])


@pytest.mark.parametrize("terminal", ['deny', 'revoke'])
def test_terminal_grants_cannot_be_approved(two_orgs, make_patient, clock, terminal):
    patient = make_patient(two_orgs['pharmacy_owner'])
    admin = two_orgs['pharmacy_owner']
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)
    if terminal == 'deny':
        grant_service.deny_access(result.grant_id, admin.id)
    else:
        grant_service.approve_access(result.grant_id, admin.id, ['view'])
        grant_service.revoke_access(result.grant_id, admin.id)

    with pytest.raises(InvalidState):
        grant_service.approve_access(result.grant_id, admin.id, ['view'])
    with pytest.raises(InvalidState):
        grant_service.approve_access(result.grant_id, admin.id, [])


def test_revoked_grant_cannot_be_denied(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    admin = two_orgs['pharmacy_owner']
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)
    grant_service.approve_access(result.grant_id, admin.id, ['view'])
    grant_service.revoke_access(result.grant_id, admin.id)

    with pytest.raises(InvalidState):
        grant_service.deny_access(result.grant_id, admin.id)


def test_pending_grant_cannot_be_revoked(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)

    with pytest.raises(InvalidState):
        grant_service.revoke_access(result.grant_id, two_orgs['pharmacy_owner'].id)


def test_revoke_records_who_and_when(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    admin = two_orgs['pharmacy_owner']
    result = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)
    grant_service.approve_access(result.grant_id, admin.id, ['view'])
    clock.advance(hours=1)

    grant = grant_service.revoke_access(result.grant_id, admin.id)

    assert grant.status == GrantStatus.REVOKED
    assert grant.revoked_by_id == admin.id
    assert grant.revoked_at == clock.now
    assert not grant.is_active


def test_unknown_grant_is_not_found(two_orgs):
    with pytest.raises(NotFound):
        grant_service.deny_access(999, two_orgs['pharmacy_owner'].id)


# ── Tests: grant_access ──────────────────────────────────────────────

def test_direct_grant_is_immediately_approved(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])

    grant = grant_service.grant_access(patient.id, two_orgs['pharmacy_owner'].id,
                                       two_orgs['clinic_member'].id, ['view', 'comment'])

    assert grant.status == GrantStatus.APPROVED
    assert grant.is_live(clock.now)
    assert grant.permissions == ['comment', 'view']


def test_direct_grant_approves_a_pending_request(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    request = grant_service.request_access(patient.share_token, two_orgs['clinic_member'].id)

    grant = grant_service.grant_access(patient.id, two_orgs['pharmacy_owner'].id,
                                       two_orgs['clinic_member'].id, ['view'])

    assert grant.id == request.grant_id
    assert grant.status == GrantStatus.APPROVED


def test_direct_grant_over_live_grant_conflicts(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    owner, grantee = two_orgs['pharmacy_owner'], two_orgs['clinic_member']
    grant_service.grant_access(patient.id, owner.id, grantee.id, ['view'])

    with pytest.raises(Conflict):
        grant_service.grant_access(patient.id, owner.id, grantee.id, ['view'])


def test_direct_grant_to_same_org_member_conflicts(two_orgs, make_patient, add_member):
    patient = make_patient(two_orgs['pharmacy_owner'])
    colleague = add_member(two_orgs['pharmacy'])

    with pytest.raises(Conflict):
        grant_service.grant_access(patient.id, two_orgs['pharmacy_owner'].id, colleague.id, ['view'])


def test_direct_grant_replaces_expired_grant(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    owner, grantee = two_orgs['pharmacy_owner'], two_orgs['clinic_member']
    first = grant_service.grant_access(patient.id, owner.id, grantee.id, ['view'], expires_in_days=1)
    clock.advance(days=2)

    second = grant_service.grant_access(patient.id, owner.id, grantee.id, ['view'], expires_in_days=1)

    assert second.id != first.id
    assert len(_open_grants(patient, grantee)) == 1


# ── Tests: listings ──────────────────────────────────────────────────

def test_listings(two_orgs, make_patient, clock):
    patient = make_patient(two_orgs['pharmacy_owner'])
    member = two_orgs['clinic_member']
    result = grant_service.request_access(patient.share_token, member.id)

    pending = grant_service.list_pending_requests(two_orgs['pharmacy_owner'].id)
    assert [g.id for g in pending] == [result.grant_id]
    assert grant_service.list_pending_requests(two_orgs['clinic_owner'].id) == []

    assert [g.id for g in grant_service.list_my_grants(member.id)] == [result.grant_id]
    assert [g.id for g in grant_service.list_patient_grants(patient.id, two_orgs['pharmacy_owner'].id)] \
        == [result.grant_id]

    with pytest.raises(Forbidden):
        grant_service.list_patient_grants(patient.id, member.id)
