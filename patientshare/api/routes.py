# /patientshare/api/routes.py

from flask import current_app
from flask_jwt_extended import jwt_required

from . import api_bp
from patientshare.extensions import limiter
from patientshare.utils.decorators import audit_log
from .controllers import organization_controller, patient_controller, access_controller, partnership_controller


def share_token_rate_limit():
    return current_app.config['SHARE_TOKEN_RATE_LIMIT']


# --- Organization Endpoints ---
@api_bp.route('/organizations', methods=['POST'])
@jwt_required()
@limiter.limit("10 per hour")
@audit_log("CREATE_ORGANIZATION", "organizations")
def create_organization():
    return organization_controller.create_organization()

@api_bp.route('/organizations/me', methods=['GET'])
@jwt_required()
@audit_log("VIEW_OWN_ORGANIZATION", "organizations")
def get_my_organization():
    return organization_controller.get_my_organization()

@api_bp.route('/organizations/invitations', methods=['POST'])
@jwt_required()
@audit_log("INVITE_MEMBER", "organizations")
def invite_member():
    return organization_controller.invite_member()

@api_bp.route('/organizations/invitations', methods=['GET'])
@jwt_required()
@audit_log("VIEW_PENDING_INVITATIONS", "organizations")
def list_pending_invitations():
    return organization_controller.list_pending_invitations()

@api_bp.route('/organizations/invitations/<int:invitation_id>', methods=['DELETE'])
@jwt_required()
@audit_log("CANCEL_INVITATION", "organizations")
def cancel_invitation(invitation_id):
    return organization_controller.cancel_invitation(invitation_id)

@api_bp.route('/organizations/invitations/<token>/accept', methods=['POST'])
@jwt_required()
@limiter.limit(share_token_rate_limit)
@audit_log("ACCEPT_INVITATION", "organizations")
def accept_invitation(token):
    return organization_controller.accept_invitation(token)

@api_bp.route('/organizations/members/<int:member_id>/role', methods=['PUT'])
@jwt_required()
@audit_log("UPDATE_MEMBER_ROLE", "organizations")
def update_member_role(member_id):
    return organization_controller.update_member_role(member_id)

@api_bp.route('/organizations/members/<int:member_id>', methods=['DELETE'])
@jwt_required()
@audit_log("REMOVE_MEMBER", "organizations")
def remove_member(member_id):
    return organization_controller.remove_member(member_id)


# --- Patient Endpoints ---
@api_bp.route('/patients', methods=['POST'])
@jwt_required()
@audit_log("CREATE_PATIENT", "patients")
def create_patient():
    return patient_controller.create_patient()

@api_bp.route('/patients', methods=['GET'])
@jwt_required()
@audit_log("VIEW_ALL_PATIENTS", "patients")
def list_patients():
    return patient_controller.list_patients()

@api_bp.route('/patients/<int:patient_id>', methods=['GET'])
@jwt_required()
@audit_log("VIEW_PATIENT", "patients")
def get_patient(patient_id):
    return patient_controller.get_patient(patient_id)

@api_bp.route('/patients/<int:patient_id>', methods=['PUT'])
@jwt_required()
@audit_log("UPDATE_PATIENT", "patients")
def update_patient(patient_id):
    return patient_controller.update_patient(patient_id)

@api_bp.route('/patients/<int:patient_id>', methods=['DELETE'])
@jwt_required()
@audit_log("DEACTIVATE_PATIENT", "patients")
def delete_patient(patient_id):
    return patient_controller.delete_patient(patient_id)

@api_bp.route('/patients/<int:patient_id>/access', methods=['GET'])
@jwt_required()
@audit_log("CHECK_PATIENT_ACCESS", "patients")
def get_access_decision(patient_id):
    return access_controller.get_access_decision(patient_id)


# --- Share Token Endpoints ---
@api_bp.route('/patients/shared/<token>', methods=['GET'])
@jwt_required()
@limiter.limit(share_token_rate_limit)
@audit_log("VIEW_SHARED_PATIENT", "patients")
def get_patient_by_share_token(token):
    return patient_controller.get_patient_by_share_token(token)

@api_bp.route('/patients/shared/<token>/request', methods=['POST'])
@jwt_required()
@limiter.limit(share_token_rate_limit)
@audit_log("REQUEST_PATIENT_ACCESS", "access_grants")
def request_access(token):
    return access_controller.request_access(token)


# --- Access Grant Endpoints ---
@api_bp.route('/patients/<int:patient_id>/grants', methods=['GET'])
@jwt_required()
@audit_log("VIEW_PATIENT_GRANTS", "access_grants")
def list_patient_grants(patient_id):
    return access_controller.list_patient_grants(patient_id)

@api_bp.route('/patients/<int:patient_id>/grants', methods=['POST'])
@jwt_required()
@audit_log("GRANT_ACCESS", "access_grants")
def grant_access(patient_id):
    return access_controller.grant_access(patient_id)

@api_bp.route('/patients/<int:patient_id>/access-log', methods=['GET'])
@jwt_required()
@audit_log("VIEW_ACCESS_LOG", "audit")
def get_access_log(patient_id):
    return access_controller.get_access_log(patient_id)

@api_bp.route('/grants/mine', methods=['GET'])
@jwt_required()
@audit_log("VIEW_OWN_GRANTS", "access_grants")
def list_my_grants():
    return access_controller.list_my_grants()

@api_bp.route('/grants/pending', methods=['GET'])
@jwt_required()
@audit_log("VIEW_PENDING_REQUESTS", "access_grants")
def list_pending_requests():
    return access_controller.list_pending_requests()

@api_bp.route('/grants/<int:grant_id>/approve', methods=['POST'])
@jwt_required()
@audit_log("APPROVE_ACCESS", "access_grants")
def approve_access(grant_id):
    return access_controller.approve_access(grant_id)

@api_bp.route('/grants/<int:grant_id>/deny', methods=['POST'])
@jwt_required()
@audit_log("DENY_ACCESS", "access_grants")
def deny_access(grant_id):
    return access_controller.deny_access(grant_id)

@api_bp.route('/grants/<int:grant_id>/revoke', methods=['POST'])
@jwt_required()
@audit_log("REVOKE_ACCESS", "access_grants")
def revoke_access(grant_id):
    return access_controller.revoke_access(grant_id)


# --- Comment & Medication Endpoints ---
@api_bp.route('/patients/<int:patient_id>/comments', methods=['GET'])
@jwt_required()
@audit_log("VIEW_PATIENT_COMMENTS", "comments")
def list_comments(patient_id):
    return patient_controller.list_comments(patient_id)

@api_bp.route('/patients/<int:patient_id>/comments', methods=['POST'])
@jwt_required()
@audit_log("ADD_PATIENT_COMMENT", "comments")
def add_comment(patient_id):
    return patient_controller.add_comment(patient_id)

@api_bp.route('/patients/<int:patient_id>/medications', methods=['GET'])
@jwt_required()
@audit_log("VIEW_PATIENT_MEDICATIONS", "medications")
def list_medications(patient_id):
    return patient_controller.list_medications(patient_id)

@api_bp.route('/patients/<int:patient_id>/medications', methods=['POST'])
@jwt_required()
@audit_log("ADD_PATIENT_MEDICATION", "medications")
def add_medication(patient_id):
    return patient_controller.add_medication(patient_id)

@api_bp.route('/patients/<int:patient_id>/medications/<int:medication_id>', methods=['PUT'])
@jwt_required()
@audit_log("UPDATE_PATIENT_MEDICATION", "medications")
def update_medication(patient_id, medication_id):
    return patient_controller.update_medication(patient_id, medication_id)


# --- Partnership Endpoints ---
@api_bp.route('/partnerships', methods=['POST'])
@jwt_required()
@audit_log("CREATE_PARTNERSHIP", "partnerships")
def create_partnership():
    return partnership_controller.create_partnership()

@api_bp.route('/partnerships', methods=['GET'])
@jwt_required()
@audit_log("VIEW_PARTNERSHIPS", "partnerships")
def list_partnerships():
    return partnership_controller.list_partnerships()

@api_bp.route('/partnerships/<token>/accept', methods=['POST'])
@jwt_required()
@limiter.limit(share_token_rate_limit)
@audit_log("ACCEPT_PARTNERSHIP", "partnerships")
def accept_partnership(token):
    return partnership_controller.accept_partnership(token)

@api_bp.route('/partnerships/<token>/reject', methods=['POST'])
@jwt_required()
@limiter.limit(share_token_rate_limit)
@audit_log("REJECT_PARTNERSHIP", "partnerships")
def reject_partnership(token):
    return partnership_controller.reject_partnership(token)
