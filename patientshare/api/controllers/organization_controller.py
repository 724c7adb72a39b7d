from flask import request, jsonify
from flask_jwt_extended import get_jwt_identity

from patientshare.errors import ValidationError
from patientshare.services import membership_service


def _json_body(*required):
    data = request.get_json(silent=True) or {}
    missing = [field for field in required if not data.get(field)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return data


def create_organization():
    """Creates an organization owned by the current user."""
    data = _json_body('name', 'type')
    organization = membership_service.create_organization(
        get_jwt_identity(), data['name'], data['type'],
        email=data.get('email'), phone_number=data.get('phone_number'),
    )
    return jsonify({'message': 'Organization created successfully', 'organization': organization.to_dict()}), 201


def get_my_organization():
    membership = membership_service.resolve_membership(get_jwt_identity())
    members = membership_service.list_members(membership.user_id)
    return jsonify({
        'organization': membership.organization.to_dict(),
        'organization_type_label': membership_service.organization_type_label(membership.organization.type),
        'role': membership.role.value,
        'members': [m.to_dict() for m in members],
    }), 200


def invite_member():
    data = _json_body('email', 'role')
    invitation = membership_service.create_invitation(get_jwt_identity(), data['email'], data['role'])
    return jsonify({'message': 'Invitation created', 'invitation': invitation.to_dict()}), 201


def list_pending_invitations():
    invitations = membership_service.list_pending_invitations(get_jwt_identity())
    return jsonify({'invitations': [i.to_dict() for i in invitations]}), 200


def cancel_invitation(invitation_id):
    membership_service.cancel_invitation(get_jwt_identity(), invitation_id)
    return jsonify({'message': 'Invitation cancelled'}), 200


def accept_invitation(token):
    membership = membership_service.accept_invitation(token, get_jwt_identity())
    return jsonify({
        'message': 'Invitation accepted',
        'organization': membership.organization.to_dict(),
        'role': membership.role.value,
    }), 200


def update_member_role(member_id):
    data = _json_body('role')
    member = membership_service.update_member_role(get_jwt_identity(), member_id, data['role'])
    return jsonify({'message': 'Member role updated', 'member': member.to_dict()}), 200


def remove_member(member_id):
    membership_service.remove_member(get_jwt_identity(), member_id)
    return jsonify({'message': 'Member removed from organization'}), 200
