# /patientshare/services/grant_service.py
"""Lifecycle of TokenAccessGrant rows.

    pending  -> approved -> revoked
    pending  -> denied

Denied and revoked are terminal. Expiry is never written back as a status;
``access_service`` evaluates it on every decision. A grant row is "open"
while ``is_active`` is true, and a partial unique index allows one open row
per (patient, grantee), so re-requesting after a denial or revocation always
creates a new row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from sqlalchemy.exc import IntegrityError

from patientshare.extensions import db
from patientshare.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from patientshare.models.access_models import (
    AccessPermission, AccessType, GRANTABLE_PERMISSIONS, GrantStatus, TokenAccessGrant,
)
from patientshare.models.organization_models import UserProfile
from patientshare.models.patient_models import Patient
from patientshare.services import token_service
from patientshare.services.membership_service import (
    Membership, can_manage_access, require_role, resolve_membership,
)
from patientshare.utils import clock
from patientshare.utils.audit_util import log_audit_event, log_audit_refusal

logger = logging.getLogger(__name__)


class RequestOutcome(StrEnum):
    CREATED = 'created'
    ALREADY_PENDING = 'already_pending'
    ALREADY_GRANTED = 'already_granted'
    SAME_ORGANIZATION = 'same_organization'


@dataclass
class AccessRequestResult:
    outcome: RequestOutcome
    patient: Patient
    grant: TokenAccessGrant | None = None

    @property
    def grant_id(self):
        return self.grant.id if self.grant else None

    def to_dict(self, now=None):
        return {
            'outcome': self.outcome.value,
            'patient_id': self.patient.id,
            'grant': self.grant.to_dict(now) if self.grant else None,
        }


def parse_permissions(permissions) -> list[str]:
    """Validates a requested permission list against what may be granted."""
    if not permissions:
        raise ValidationError('At least one permission is required')
    parsed = set()
    for value in permissions:
        try:
            permission = AccessPermission(value)
        except ValueError:
            raise ValidationError(f"Unknown permission '{value}'")
        if permission not in GRANTABLE_PERMISSIONS:
            raise ValidationError(f"Permission '{value}' cannot be granted to another organization")
        parsed.add(permission.value)
    return sorted(parsed)


def resolve_expiry(expires_at: datetime | None = None, expires_in_days: int | None = None):
    if expires_at is not None and expires_in_days is not None:
        raise ValidationError('Provide either expires_at or expires_in_days, not both')
    if expires_in_days is not None:
        if expires_in_days <= 0:
            raise ValidationError('expires_in_days must be positive')
        return clock.days_from_now(expires_in_days)
    if expires_at is not None and expires_at <= clock.utcnow():
        raise ValidationError('expires_at must be in the future')
    return expires_at


def _open_grant(patient_id, user_id, lock=False) -> TokenAccessGrant | None:
    query = TokenAccessGrant.query.filter_by(patient_id=patient_id, granted_to_id=user_id, is_active=True)
    if lock:
        query = query.with_for_update()
    return query.populate_existing().first()


def _supersede(grant: TokenAccessGrant, now: datetime):
    """Closes a stale open grant so a new row can be opened."""
    grant.is_active = False
    grant.superseded_at = now
    db.session.flush()
    logger.debug("Superseded stale grant %s", grant.id)


def _is_stale(grant: TokenAccessGrant, organization_id, now: datetime) -> bool:
    """An open grant made out to another organization, or an approval that has lapsed."""
    if grant.granted_to_org_id != organization_id:
        return True
    return grant.status == GrantStatus.APPROVED and grant.is_expired(now)


def _load_grant_for_update(grant_id) -> TokenAccessGrant:
    grant = (TokenAccessGrant.query
             .filter_by(id=grant_id)
             .with_for_update()
             .populate_existing()
             .first())
    if grant is None:
        raise NotFound('Access grant not found')
    return grant


def _require_grant_manager(patient: Patient, user_id, action: str) -> Membership:
    membership = resolve_membership(user_id)
    if membership.organization_id != patient.organization_id:
        log_audit_refusal(action, UserID=membership.user_id, OrgID=membership.organization_id,
                          PatientID=patient.id)
        raise Forbidden("Only the patient's organization can manage access to this patient")
    require_role(membership, can_manage_access, action)
    return membership


def _transition(grant: TokenAccessGrant, target: GrantStatus):
    if not grant.can_transition_to(target) or not grant.is_active:
        raise InvalidState(f'Cannot move a {grant.status.value} grant to {target.value}')
    grant.status = target


def _commit_open_grant(grant: TokenAccessGrant):
    """Commits a new open grant; a concurrent insert for the same pair loses the race."""
    try:
        db.session.add(grant)
        db.session.commit()
        return True
    except IntegrityError:
        db.session.rollback()
        return False


def _existing_request_result(patient: Patient, existing: TokenAccessGrant) -> AccessRequestResult:
    if existing.status == GrantStatus.PENDING:
        return AccessRequestResult(RequestOutcome.ALREADY_PENDING, patient, existing)
    return AccessRequestResult(RequestOutcome.ALREADY_GRANTED, patient, existing)


def request_access(share_token, user_id) -> AccessRequestResult:
    """Self-service request for access to the patient behind a share token."""
    membership = resolve_membership(user_id)
    token = token_service.normalize_token(share_token)
    patient = Patient.query.filter_by(share_token=token).first()
    if patient is None or not patient.is_active:
        raise NotFound('Patient not found')

    if patient.organization_id == membership.organization_id:
        return AccessRequestResult(RequestOutcome.SAME_ORGANIZATION, patient)

    now = clock.utcnow()
    existing = _open_grant(patient.id, membership.user_id, lock=True)
    if existing is not None:
        if _is_stale(existing, membership.organization_id, now):
            _supersede(existing, now)
        else:
            return _existing_request_result(patient, existing)

    grant = TokenAccessGrant(
        patient_id=patient.id,
        share_token=patient.share_token,
        granted_to_id=membership.user_id,
        granted_to_org_id=membership.organization_id,
        granted_by_org_id=patient.organization_id,
        access_type=AccessType.CROSS_ORGANIZATION,
        status=GrantStatus.PENDING,
        permissions=[],
        requested_at=now,
        is_active=True,
    )
    if not _commit_open_grant(grant):
        existing = _open_grant(patient.id, membership.user_id)
        if existing is None:
            raise Conflict('Access request could not be recorded, please retry')
        return _existing_request_result(patient, existing)

    log_audit_event('ACCESS_REQUESTED', UserID=membership.user_id, OrgID=membership.organization_id,
                    PatientID=patient.id, GrantID=grant.id)
    return AccessRequestResult(RequestOutcome.CREATED, patient, grant)


def approve_access(grant_id, user_id, permissions, expires_at=None, expires_in_days=None) -> TokenAccessGrant:
    grant = _load_grant_for_update(grant_id)
    membership = _require_grant_manager(grant.patient, user_id, 'APPROVE_ACCESS')
    _transition(grant, GrantStatus.APPROVED)

    granted_permissions = parse_permissions(permissions)
    expiry = resolve_expiry(expires_at, expires_in_days)

    grant.permissions = granted_permissions
    grant.expires_at = expiry
    grant.granted_by_id = membership.user_id
    grant.granted_at = clock.utcnow()
    db.session.commit()

    log_audit_event('ACCESS_APPROVED', UserID=membership.user_id, GrantID=grant.id,
                    PatientID=grant.patient_id, GranteeID=grant.granted_to_id,
                    Permissions=','.join(granted_permissions),
                    ExpiresAt=expiry.isoformat() if expiry else 'never')
    return grant


def deny_access(grant_id, user_id) -> TokenAccessGrant:
    grant = _load_grant_for_update(grant_id)
    membership = _require_grant_manager(grant.patient, user_id, 'DENY_ACCESS')
    _transition(grant, GrantStatus.DENIED)

    grant.is_active = False
    grant.denied_at = clock.utcnow()
    grant.denied_by_id = membership.user_id
    db.session.commit()

    log_audit_event('ACCESS_DENIED', UserID=membership.user_id, GrantID=grant.id,
                    PatientID=grant.patient_id, GranteeID=grant.granted_to_id)
    return grant


def revoke_access(grant_id, user_id) -> TokenAccessGrant:
    """Revokes an approved grant. Takes effect for every decision after commit."""
    grant = _load_grant_for_update(grant_id)
    membership = _require_grant_manager(grant.patient, user_id, 'REVOKE_ACCESS')
    _transition(grant, GrantStatus.REVOKED)

    grant.is_active = False
    grant.revoked_at = clock.utcnow()
    grant.revoked_by_id = membership.user_id
    db.session.commit()

    log_audit_event('ACCESS_REVOKED', UserID=membership.user_id, GrantID=grant.id,
                    PatientID=grant.patient_id, GranteeID=grant.granted_to_id)
    return grant


def grant_access(patient_id, user_id, grantee_id, permissions, expires_at=None, expires_in_days=None) -> TokenAccessGrant:
    """Directly grants a named user outside the organization access to a patient."""
    granted_permissions = parse_permissions(permissions)
    expiry = resolve_expiry(expires_at, expires_in_days)

    patient = db.session.get(Patient, patient_id)
    if patient is None or not patient.is_active:
        raise NotFound('Patient not found')
    membership = _require_grant_manager(patient, user_id, 'GRANT_ACCESS')

    grantee = db.session.get(UserProfile, grantee_id)
    if grantee is None or not grantee.is_active:
        raise NotFound('User to grant access not found')
    if grantee.organization_id is None:
        raise ValidationError('User to grant access must belong to an organization')
    if grantee.organization_id == patient.organization_id:
        raise Conflict('Members of the owning organization already have access')

    now = clock.utcnow()
    existing = _open_grant(patient.id, grantee.id, lock=True)
    if existing is not None and existing.granted_to_org_id != grantee.organization_id:
        _supersede(existing, now)
        existing = None
    if existing is not None:
        if existing.status == GrantStatus.PENDING:
            return approve_access(existing.id, user_id, granted_permissions, expires_at=expiry)
        if not existing.is_expired(now):
            raise Conflict('User already has live access to this patient')
        _supersede(existing, now)

    grant = TokenAccessGrant(
        patient_id=patient.id,
        share_token=patient.share_token,
        granted_to_id=grantee.id,
        granted_to_org_id=grantee.organization_id,
        granted_by_id=membership.user_id,
        granted_by_org_id=patient.organization_id,
        access_type=AccessType.CROSS_ORGANIZATION,
        status=GrantStatus.APPROVED,
        permissions=granted_permissions,
        expires_at=expiry,
        requested_at=now,
        granted_at=now,
        is_active=True,
    )
    if not _commit_open_grant(grant):
        raise Conflict('Access for this user changed concurrently, please retry')

    log_audit_event('ACCESS_GRANTED', UserID=membership.user_id, GrantID=grant.id,
                    PatientID=patient.id, GranteeID=grantee.id,
                    Permissions=','.join(granted_permissions),
                    ExpiresAt=expiry.isoformat() if expiry else 'never')
    return grant


def list_patient_grants(patient_id, user_id):
    """All grants for a patient, newest request first. Owning organization only."""
    membership = resolve_membership(user_id)
    patient = db.session.get(Patient, patient_id)
    if patient is None:
        raise NotFound('Patient not found')
    if patient.organization_id != membership.organization_id:
        raise Forbidden('Patient not in your organization')
    return (TokenAccessGrant.query
            .filter_by(patient_id=patient_id)
            .order_by(TokenAccessGrant.requested_at.desc(), TokenAccessGrant.id.desc())
            .all())


def list_my_grants(user_id):
    membership = resolve_membership(user_id)
    return (TokenAccessGrant.query
            .filter_by(granted_to_id=membership.user_id)
            .order_by(TokenAccessGrant.requested_at.desc(), TokenAccessGrant.id.desc())
            .all())


def list_pending_requests(user_id):
    """Pending requests against patients of the caller's organization."""
    membership = resolve_membership(user_id)
    return (TokenAccessGrant.query
            .join(Patient, Patient.id == TokenAccessGrant.patient_id)
            .filter(Patient.organization_id == membership.organization_id,
                    TokenAccessGrant.status == GrantStatus.PENDING,
                    TokenAccessGrant.is_active.is_(True))
            .order_by(TokenAccessGrant.requested_at.asc())
            .all())
