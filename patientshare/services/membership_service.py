# /patientshare/services/membership_service.py
"""Resolves a caller's organization and role, and manages membership."""
from dataclasses import dataclass
from typing import assert_never

from flask import current_app

from patientshare.extensions import db
from patientshare.errors import Conflict, Expired, Forbidden, NotFound, Unauthorized, ValidationError
from patientshare.models.access_models import TokenAccessGrant
from patientshare.models.organization_models import (
    MemberInvitation, MemberRole, Organization, OrganizationType, UserProfile,
)
from patientshare.services import token_service
from patientshare.utils import clock
from patientshare.utils.audit_util import log_audit_event, log_audit_refusal


@dataclass(frozen=True)
class Membership:
    user: UserProfile
    organization: Organization
    role: MemberRole

    @property
    def user_id(self):
        return self.user.id

    @property
    def organization_id(self):
        return self.organization.id


def can_manage_access(role: MemberRole) -> bool:
    """Whether the role may approve, deny, revoke or directly grant patient access."""
    match role:
        case MemberRole.OWNER | MemberRole.ADMIN:
            return True
        case MemberRole.MEMBER | MemberRole.VIEWER:
            return False
        case _:
            assert_never(role)


def can_manage_members(role: MemberRole) -> bool:
    match role:
        case MemberRole.OWNER | MemberRole.ADMIN:
            return True
        case MemberRole.MEMBER | MemberRole.VIEWER:
            return False
        case _:
            assert_never(role)


def can_manage_partnerships(role: MemberRole) -> bool:
    match role:
        case MemberRole.OWNER | MemberRole.ADMIN:
            return True
        case MemberRole.MEMBER | MemberRole.VIEWER:
            return False
        case _:
            assert_never(role)


def organization_type_label(org_type: OrganizationType) -> str:
    match org_type:
        case OrganizationType.PHARMACY:
            return 'Pharmacy'
        case OrganizationType.GP_CLINIC:
            return 'GP Clinic'
        case OrganizationType.HOSPITAL:
            return 'Hospital'
        case OrganizationType.AGED_CARE:
            return 'Aged Care'
        case _:
            assert_never(org_type)


def _parse_enum(enum_cls, value, field):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Expected one of: {allowed}")


def get_active_user(user_id) -> UserProfile:
    """Looks up the authenticated identity; unknown or inactive users are Unauthorized."""
    if user_id is None:
        raise Unauthorized('Authentication required')
    user = db.session.get(UserProfile, int(user_id))
    if not user or not user.is_active:
        raise Unauthorized('User not found or inactive')
    return user


def resolve_membership(user_id) -> Membership:
    user = get_active_user(user_id)
    organization = user.organization
    if organization is None or user.role is None or not organization.is_active:
        raise Unauthorized('User must belong to an organization')
    return Membership(user=user, organization=organization, role=user.role)


def require_role(membership: Membership, predicate, action: str):
    if not predicate(membership.role):
        log_audit_refusal(action, UserID=membership.user_id, Role=membership.role.value,
                          OrgID=membership.organization_id)
        raise Forbidden(f'Insufficient permissions to {action.lower().replace("_", " ")}')


def create_user(email, first_name, last_name) -> UserProfile:
    """Provisions a user profile for an identity issued by the authentication subsystem."""
    if UserProfile.query.filter_by(email=email.lower()).first():
        raise Conflict('A user with that email already exists')
    user = UserProfile(email=email.lower(), first_name=first_name, last_name=last_name)
    db.session.add(user)
    db.session.commit()
    return user


def create_organization(user_id, name, org_type, email=None, phone_number=None) -> Organization:
    """Creates an organization; the caller becomes its owner."""
    user = get_active_user(user_id)
    if user.organization_id is not None:
        raise Conflict('User already belongs to an organization')

    organization = Organization(
        name=name,
        type=_parse_enum(OrganizationType, org_type, 'organization type'),
        email=email,
        phone_number=phone_number,
        owner=user,
    )
    db.session.add(organization)
    db.session.flush()

    user.organization_id = organization.id
    user.role = MemberRole.OWNER
    db.session.commit()

    log_audit_event('ORGANIZATION_CREATED', UserID=user.id, OrgID=organization.id,
                    OrgType=organization.type.value)
    return organization


def list_members(user_id):
    membership = resolve_membership(user_id)
    return membership.organization.members.filter_by(is_active=True).all()


def create_invitation(user_id, email, role) -> MemberInvitation:
    membership = resolve_membership(user_id)
    require_role(membership, can_manage_members, 'INVITE_MEMBER')

    invited_role = _parse_enum(MemberRole, role, 'role')
    if invited_role == MemberRole.OWNER:
        raise ValidationError('An organization has exactly one owner')

    email = email.lower()
    existing = UserProfile.query.filter_by(email=email).first()
    if existing and existing.organization_id == membership.organization_id:
        raise Conflict('User is already a member of this organization')

    token = token_service.issue_unique_token(
        token_service.invite_token_prefix(),
        lambda t: MemberInvitation.query.filter_by(invite_token=t).first() is not None,
    )
    invitation = MemberInvitation(
        organization_id=membership.organization_id,
        invited_by_id=membership.user_id,
        invite_token=token,
        email=email,
        role=invited_role,
        expires_at=clock.days_from_now(current_app.config['INVITATION_EXPIRY_DAYS']),
    )
    db.session.add(invitation)
    db.session.commit()

    log_audit_event('MEMBER_INVITED', UserID=membership.user_id, OrgID=membership.organization_id,
                    Role=invited_role.value, InvitationID=invitation.id)
    return invitation


def accept_invitation(token, user_id) -> Membership:
    user = get_active_user(user_id)
    invitation = MemberInvitation.query.filter_by(
        invite_token=token_service.normalize_token(token), is_active=True
    ).first()

    if invitation is None or invitation.email != user.email:
        raise NotFound('Invitation not found')
    if invitation.is_used:
        raise Conflict('Invitation has already been used')
    if invitation.expires_at <= clock.utcnow():
        raise Expired('Invitation has expired')
    if user.organization_id is not None:
        raise Conflict('User already belongs to an organization')

    user.organization_id = invitation.organization_id
    user.role = invitation.role
    invitation.is_used = True
    invitation.used_by_id = user.id
    invitation.used_at = clock.utcnow()
    db.session.commit()

    log_audit_event('INVITATION_ACCEPTED', UserID=user.id, OrgID=invitation.organization_id,
                    Role=invitation.role.value)
    return resolve_membership(user.id)


def _get_member(membership: Membership, member_id) -> UserProfile:
    member = db.session.get(UserProfile, member_id)
    if not member or member.organization_id != membership.organization_id:
        raise NotFound('Member not found in organization')
    return member


def update_member_role(user_id, member_id, role) -> UserProfile:
    membership = resolve_membership(user_id)
    require_role(membership, can_manage_members, 'UPDATE_MEMBER_ROLE')

    new_role = _parse_enum(MemberRole, role, 'role')
    if new_role == MemberRole.OWNER:
        raise ValidationError('Ownership cannot be assigned through a role change')

    member = _get_member(membership, member_id)
    if member.role == MemberRole.OWNER:
        raise Forbidden('Cannot change owner role')

    member.role = new_role
    db.session.commit()
    log_audit_event('MEMBER_ROLE_UPDATED', UserID=membership.user_id, MemberID=member.id, Role=new_role.value)
    return member


def remove_member(user_id, member_id):
    membership = resolve_membership(user_id)
    require_role(membership, can_manage_members, 'REMOVE_MEMBER')

    member = _get_member(membership, member_id)
    if member.role == MemberRole.OWNER:
        raise Forbidden('Cannot remove organization owner')

    # Grants were made out to the member as part of this organization
    now = clock.utcnow()
    closed = (TokenAccessGrant.query
              .filter_by(granted_to_id=member.id, granted_to_org_id=membership.organization_id, is_active=True)
              .update({'is_active': False, 'superseded_at': now}, synchronize_session='fetch'))

    member.organization_id = None
    member.role = None
    db.session.commit()
    log_audit_event('MEMBER_REMOVED', UserID=membership.user_id, MemberID=member.id,
                    OrgID=membership.organization_id, ClosedGrants=closed)


def list_pending_invitations(user_id) -> list[MemberInvitation]:
    """Open invitations of the caller's organization, newest first."""
    membership = resolve_membership(user_id)
    return (MemberInvitation.query
            .filter(MemberInvitation.organization_id == membership.organization_id,
                    MemberInvitation.is_active.is_(True),
                    MemberInvitation.is_used.is_(False),
                    MemberInvitation.expires_at > clock.utcnow())
            .order_by(MemberInvitation.created_at.desc(), MemberInvitation.id.desc())
            .all())


def cancel_invitation(user_id, invitation_id) -> MemberInvitation:
    membership = resolve_membership(user_id)
    require_role(membership, can_manage_members, 'CANCEL_INVITATION')

    invitation = db.session.get(MemberInvitation, invitation_id)
    if invitation is None or invitation.organization_id != membership.organization_id:
        raise NotFound('Invitation not found')
    if invitation.is_used:
        raise Conflict('Invitation has already been used')

    invitation.is_active = False
    db.session.commit()
    log_audit_event('INVITATION_CANCELLED', UserID=membership.user_id, OrgID=membership.organization_id,
                    InvitationID=invitation.id)
    return invitation
