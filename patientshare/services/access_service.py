# /patientshare/services/access_service.py
"""The access decision for a (patient, caller) pair.

Every read or write of patient data, comments and medications goes through
``decide_access`` (or ``require_access``, which raises on a negative
decision). Members of the owning organization are always allowed with the
full permission set; anyone else needs a live TokenAccessGrant, and gets
exactly the permissions on that grant.

Liveness is computed here on every call from status, ``is_active`` and
``expires_at``. Grant rows are re-read from the database on each decision
(``populate_existing``) so a committed revoke is visible immediately.
"""
from dataclasses import dataclass, field

from patientshare.extensions import db
from patientshare.errors import AccessControlError, AccessDenied, NotFound
from patientshare.models.access_models import (
    AccessPermission, AccessType, FULL_PERMISSIONS, TokenAccessGrant,
)
from patientshare.models.patient_models import Patient
from patientshare.services.membership_service import Membership, resolve_membership
from patientshare.utils import clock
from patientshare.utils.audit_util import log_audit_refusal


@dataclass
class AccessDecision:
    allowed: bool
    access_type: AccessType | None = None
    permissions: frozenset = field(default_factory=frozenset)
    patient: Patient | None = None
    membership: Membership | None = None
    grant: TokenAccessGrant | None = None
    denial: AccessControlError | None = None

    def has(self, permission: AccessPermission) -> bool:
        return self.allowed and permission in self.permissions

    def raise_for_denial(self):
        if not self.allowed:
            raise self.denial

    def to_dict(self):
        return {
            'allowed': self.allowed,
            'access_type': self.access_type.value if self.access_type else None,
            'permissions': sorted(p.value for p in self.permissions),
            'reason': self.denial.code if self.denial else None,
        }


def _deny(error: AccessControlError, **context) -> AccessDecision:
    return AccessDecision(allowed=False, denial=error, **context)


def find_live_grant(patient_id, membership: Membership, now=None) -> TokenAccessGrant | None:
    """A grant only counts for the organization it was approved for."""
    now = now or clock.utcnow()
    return (TokenAccessGrant.query
            .filter(TokenAccessGrant.patient_id == patient_id,
                    TokenAccessGrant.granted_to_id == membership.user_id,
                    TokenAccessGrant.granted_to_org_id == membership.organization_id,
                    TokenAccessGrant.live_filter(now))
            .order_by(TokenAccessGrant.granted_at.desc(), TokenAccessGrant.id.desc())
            .execution_options(populate_existing=True)
            .first())


def decide_access(patient_id, user_id) -> AccessDecision:
    patient = db.session.get(Patient, patient_id, populate_existing=True)
    if patient is None or not patient.is_active:
        return _deny(NotFound('Patient not found'))

    try:
        membership = resolve_membership(user_id)
    except AccessControlError as exc:
        return _deny(exc, patient=patient)

    if membership.organization_id == patient.organization_id:
        return AccessDecision(
            allowed=True,
            access_type=AccessType.SAME_ORGANIZATION,
            permissions=FULL_PERMISSIONS,
            patient=patient,
            membership=membership,
        )

    grant = find_live_grant(patient.id, membership)
    if grant is None:
        log_audit_refusal('ACCESS_DENIED', UserID=membership.user_id, OrgID=membership.organization_id,
                          PatientID=patient.id)
        return _deny(AccessDenied('No live access grant for this patient'),
                     patient=patient, membership=membership)

    return AccessDecision(
        allowed=True,
        access_type=AccessType.CROSS_ORGANIZATION,
        permissions=grant.permission_set(),
        patient=patient,
        membership=membership,
        grant=grant,
    )


def require_access(patient_id, user_id, permission: AccessPermission) -> AccessDecision:
    """Raises the typed denial unless the caller holds ``permission`` on the patient."""
    decision = decide_access(patient_id, user_id)
    decision.raise_for_denial()
    if permission not in decision.permissions:
        log_audit_refusal('PERMISSION_DENIED', UserID=decision.membership.user_id,
                          PatientID=patient_id, Permission=permission.value)
        raise AccessDenied(f"Access to this patient does not include '{permission.value}'")
    return decision
