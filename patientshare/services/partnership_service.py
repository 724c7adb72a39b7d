# /patientshare/services/partnership_service.py
"""Organization-to-organization partnerships.

A partnership records trust between two organizations. It is deliberately
not consulted by the access decision: patient-level access always needs its
own TokenAccessGrant.
"""
from flask import current_app

from patientshare.extensions import db
from patientshare.errors import Expired, Forbidden, InvalidState, NotFound, ValidationError
from patientshare.models.partnership_models import (
    OrganizationPartnership, PartnershipStatus, PartnershipType,
)
from patientshare.services import token_service
from patientshare.services.membership_service import (
    can_manage_partnerships, require_role, resolve_membership,
)
from patientshare.utils import clock
from patientshare.utils.audit_util import log_audit_event


def create_partnership(user_id, partnership_type, notes=None) -> OrganizationPartnership:
    membership = resolve_membership(user_id)
    require_role(membership, can_manage_partnerships, 'CREATE_PARTNERSHIP')

    try:
        kind = PartnershipType(partnership_type)
    except ValueError:
        raise ValidationError(f"Invalid partnership type '{partnership_type}'")

    token = token_service.issue_unique_token(
        token_service.partnership_token_prefix(),
        lambda t: OrganizationPartnership.query.filter_by(partnership_token=t).first() is not None,
    )
    now = clock.utcnow()
    partnership = OrganizationPartnership(
        initiator_org_id=membership.organization_id,
        partnership_token=token,
        partnership_type=kind,
        status=PartnershipStatus.PENDING,
        initiated_by_id=membership.user_id,
        created_at=now,
        expires_at=clock.days_from_now(current_app.config['PARTNERSHIP_EXPIRY_DAYS']),
        notes=notes,
    )
    db.session.add(partnership)
    db.session.commit()

    log_audit_event('PARTNERSHIP_CREATED', UserID=membership.user_id, OrgID=membership.organization_id,
                    PartnershipID=partnership.id, Type=kind.value)
    return partnership


def _load_pending_for_response(token, membership) -> OrganizationPartnership:
    partnership = (OrganizationPartnership.query
                   .filter_by(partnership_token=token_service.normalize_token(token), is_active=True)
                   .with_for_update()
                   .populate_existing()
                   .first())
    if partnership is None:
        raise NotFound('Partnership not found')
    if partnership.initiator_org_id == membership.organization_id:
        raise Forbidden('An organization cannot respond to its own partnership')

    status = partnership.effective_status(clock.utcnow())
    if status == PartnershipStatus.EXPIRED:
        raise Expired('Partnership invitation has expired')
    if status != PartnershipStatus.PENDING:
        raise InvalidState(f'Partnership is already {status.value}')
    return partnership


def accept_partnership(token, user_id) -> OrganizationPartnership:
    membership = resolve_membership(user_id)
    require_role(membership, can_manage_partnerships, 'ACCEPT_PARTNERSHIP')
    partnership = _load_pending_for_response(token, membership)

    partnership.partner_org_id = membership.organization_id
    partnership.status = PartnershipStatus.ACCEPTED
    partnership.accepted_by_id = membership.user_id
    partnership.accepted_at = clock.utcnow()
    db.session.commit()

    log_audit_event('PARTNERSHIP_ACCEPTED', UserID=membership.user_id, OrgID=membership.organization_id,
                    PartnershipID=partnership.id, InitiatorOrgID=partnership.initiator_org_id)
    return partnership


def reject_partnership(token, user_id) -> OrganizationPartnership:
    membership = resolve_membership(user_id)
    require_role(membership, can_manage_partnerships, 'REJECT_PARTNERSHIP')
    partnership = _load_pending_for_response(token, membership)

    partnership.status = PartnershipStatus.REJECTED
    partnership.rejected_by_id = membership.user_id
    partnership.rejected_at = clock.utcnow()
    db.session.commit()

    log_audit_event('PARTNERSHIP_REJECTED', UserID=membership.user_id, OrgID=membership.organization_id,
                    PartnershipID=partnership.id)
    return partnership


def list_partnerships(user_id):
    """Partnerships the caller's organization initiated or accepted."""
    membership = resolve_membership(user_id)
    org_id = membership.organization_id
    return (OrganizationPartnership.query
            .filter(db.or_(OrganizationPartnership.initiator_org_id == org_id,
                           OrganizationPartnership.partner_org_id == org_id),
                    OrganizationPartnership.is_active.is_(True))
            .order_by(OrganizationPartnership.created_at.desc())
            .all())
