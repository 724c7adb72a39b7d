# /patientshare/services/patient_service.py

from patientshare.extensions import db
from patientshare.errors import NotFound, ValidationError
from patientshare.models.access_models import (
    AccessPermission, AccessType, FULL_PERMISSIONS, TokenAccessGrant,
)
from patientshare.models.patient_models import (
    CommentType, Patient, PatientComment, PatientMedication, PreferredPack,
)
from patientshare.services import audit_service, token_service
from patientshare.services.access_service import AccessDecision, decide_access, require_access
from patientshare.services.membership_service import organization_type_label, resolve_membership
from patientshare.utils import clock
from patientshare.utils.audit_util import log_audit_event
from patientshare.utils.encryption_util import encryptor


REQUIRED_FIELDS = ('first_name', 'last_name', 'date_of_birth')
ENCRYPTED_FIELDS = (
    'first_name', 'last_name', 'date_of_birth', 'email', 'phone',
    'street_address', 'suburb', 'state', 'postcode',
)


def _parse_pack(value):
    try:
        return PreferredPack(value)
    except ValueError:
        raise ValidationError(f"Invalid preferred pack '{value}'")


def patient_view(patient: Patient, access_type: AccessType, permissions) -> dict:
    """Decrypted patient record as seen by a caller with the given access."""
    organization = patient.organization
    data = encryptor.decrypt_fields(patient, ENCRYPTED_FIELDS)
    data.update({
        'id': patient.id,
        'share_token': patient.share_token,
        'organization_id': patient.organization_id,
        'organization_name': organization.name,
        'organization_type': organization_type_label(organization.type),
        'preferred_pack': patient.preferred_pack.value if patient.preferred_pack else None,
        'is_active': patient.is_active,
        'is_shared': access_type == AccessType.CROSS_ORGANIZATION,
        'access_type': access_type.value,
        'permissions': sorted(p.value for p in permissions),
        'created_at': patient.created_at.isoformat() if patient.created_at else None,
    })
    return data


def view_for_decision(decision: AccessDecision) -> dict:
    return patient_view(decision.patient, decision.access_type, decision.permissions)


def create_patient(user_id, data) -> tuple[int, str]:
    """Creates a patient owned by the caller's organization.

    Returns the new patient id and its share token.
    """
    membership = resolve_membership(user_id)

    missing = [field for field in REQUIRED_FIELDS if not data.get(field)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    share_token = token_service.issue_unique_token(
        token_service.share_token_prefix(),
        lambda t: Patient.query.filter_by(share_token=t).first() is not None,
    )
    patient = Patient(
        share_token=share_token,
        organization_id=membership.organization_id,
        preferred_pack=_parse_pack(data.get('preferred_pack', PreferredPack.BLISTER.value)),
        created_by_id=membership.user_id,
        is_active=True,
        **encryptor.encrypt_fields(data, ENCRYPTED_FIELDS),
    )
    db.session.add(patient)
    db.session.commit()

    log_audit_event('PATIENT_CREATED', UserID=membership.user_id, OrgID=membership.organization_id,
                    PatientID=patient.id)
    return patient.id, patient.share_token


def get_patient(patient_id, user_id) -> dict:
    decision = require_access(patient_id, user_id, AccessPermission.VIEW)
    return view_for_decision(decision)


def update_patient(patient_id, user_id, data) -> dict:
    decision = require_access(patient_id, user_id, AccessPermission.EDIT)
    patient = decision.patient

    for field in REQUIRED_FIELDS:
        if field in data and not data[field]:
            raise ValidationError(f"'{field}' cannot be empty")
    for field, value in encryptor.encrypt_fields(data, ENCRYPTED_FIELDS).items():
        setattr(patient, field, value)
    if 'preferred_pack' in data:
        patient.preferred_pack = _parse_pack(data['preferred_pack'])

    db.session.commit()
    log_audit_event('PATIENT_UPDATED', UserID=decision.membership.user_id, PatientID=patient.id)
    return view_for_decision(decision)


def deactivate_patient(patient_id, user_id):
    """Soft delete. Grants referencing the patient are kept but confer nothing."""
    decision = require_access(patient_id, user_id, AccessPermission.EDIT)
    decision.patient.is_active = False
    db.session.commit()
    log_audit_event('PATIENT_DEACTIVATED', UserID=decision.membership.user_id, PatientID=patient_id)


def list_accessible_patients(user_id, limit=None, offset=0) -> list[dict]:
    """Own-organization patients plus patients reachable through live grants."""
    membership = resolve_membership(user_id)
    now = clock.utcnow()

    views = {}
    own = Patient.query.filter_by(organization_id=membership.organization_id, is_active=True).all()
    for patient in own:
        views[patient.id] = (patient, patient_view(patient, AccessType.SAME_ORGANIZATION, FULL_PERMISSIONS))

    grants = (TokenAccessGrant.query
              .filter(TokenAccessGrant.granted_to_id == membership.user_id,
                      TokenAccessGrant.granted_to_org_id == membership.organization_id,
                      TokenAccessGrant.live_filter(now))
              .all())
    for grant in grants:
        patient = grant.patient
        if not patient.is_active or patient.id in views:
            continue
        views[patient.id] = (patient, patient_view(patient, AccessType.CROSS_ORGANIZATION, grant.permission_set()))

    ordered = sorted(views.values(), key=lambda item: (item[0].created_at, item[0].id), reverse=True)
    result = [view for _, view in ordered]
    if limit is not None:
        return result[offset:offset + limit]
    return result[offset:]


def get_patient_by_share_token(share_token, user_id) -> dict | None:
    """Patient view for a share-token holder, or None when access is not permitted.

    Cross-organization views are written to the share-token access log before
    the record is returned; a failed log write fails the whole call.
    """
    token = token_service.normalize_token(share_token)
    patient = Patient.query.filter_by(share_token=token).first()
    if patient is None:
        return None

    decision = decide_access(patient.id, user_id)
    if not decision.has(AccessPermission.VIEW):
        return None

    if decision.access_type == AccessType.CROSS_ORGANIZATION:
        audit_service.record_access(decision.patient, decision.membership, patient.share_token,
                                    AccessType.CROSS_ORGANIZATION)
    return view_for_decision(decision)


def _comment_to_dict(comment: PatientComment) -> dict:
    return {
        'id': comment.id,
        'patient_id': comment.patient_id,
        'author_id': comment.author_id,
        'author_name': comment.author.full_name if comment.author else None,
        'author_org_id': comment.author_org_id,
        'content': encryptor.decrypt(comment.content),
        'comment_type': comment.comment_type.value,
        'is_private': comment.is_private,
        'reply_to_id': comment.reply_to_id,
        'created_at': comment.created_at.isoformat() if comment.created_at else None,
    }


def add_comment(patient_id, user_id, content, comment_type=CommentType.NOTE.value,
                is_private=False, reply_to_id=None) -> dict:
    decision = require_access(patient_id, user_id, AccessPermission.COMMENT)
    if not content or not content.strip():
        raise ValidationError('Comment content is required')
    try:
        kind = CommentType(comment_type)
    except ValueError:
        raise ValidationError(f"Invalid comment type '{comment_type}'")

    if reply_to_id is not None:
        parent = db.session.get(PatientComment, reply_to_id)
        if parent is None or parent.patient_id != decision.patient.id:
            raise NotFound('Comment to reply to not found')

    comment = PatientComment(
        patient_id=decision.patient.id,
        author_id=decision.membership.user_id,
        author_org_id=decision.membership.organization_id,
        content=encryptor.encrypt(content.strip()),
        comment_type=kind,
        is_private=bool(is_private),
        reply_to_id=reply_to_id,
    )
    db.session.add(comment)
    db.session.commit()
    return _comment_to_dict(comment)


def list_comments(patient_id, user_id) -> list[dict]:
    """Comments newest first; private comments only within the author's organization."""
    decision = require_access(patient_id, user_id, AccessPermission.VIEW)
    comments = (decision.patient.comments
                .filter_by(is_active=True)
                .order_by(PatientComment.created_at.desc(), PatientComment.id.desc())
                .all())
    org_id = decision.membership.organization_id
    return [_comment_to_dict(c) for c in comments if not c.is_private or c.author_org_id == org_id]


def add_medication(patient_id, user_id, data) -> dict:
    decision = require_access(patient_id, user_id, AccessPermission.EDIT)
    if not data.get('medication_name') or not data.get('dosage'):
        raise ValidationError('Missing required fields: medication_name, dosage')

    medication = PatientMedication(
        patient_id=decision.patient.id,
        organization_id=decision.membership.organization_id,
        medication_name=data['medication_name'],
        dosage=data['dosage'],
        instructions=data.get('instructions'),
        added_by_id=decision.membership.user_id,
    )
    db.session.add(medication)
    db.session.commit()
    log_audit_event('MEDICATION_ADDED', UserID=decision.membership.user_id, PatientID=patient_id,
                    MedicationID=medication.id)
    return medication.to_dict()


def update_medication(patient_id, medication_id, user_id, data) -> dict:
    """Edits a medication entry. Setting is_active to false stops it."""
    decision = require_access(patient_id, user_id, AccessPermission.EDIT)
    medication = db.session.get(PatientMedication, medication_id)
    if medication is None or medication.patient_id != decision.patient.id:
        raise NotFound('Medication not found')

    for field in ('medication_name', 'dosage'):
        if field in data:
            if not data[field]:
                raise ValidationError(f"'{field}' cannot be empty")
            setattr(medication, field, data[field])
    if 'instructions' in data:
        medication.instructions = data['instructions']
    if 'is_active' in data:
        medication.is_active = bool(data['is_active'])

    db.session.commit()
    log_audit_event('MEDICATION_UPDATED', UserID=decision.membership.user_id, PatientID=patient_id,
                    MedicationID=medication.id, Active=medication.is_active)
    return medication.to_dict()


def list_medications(patient_id, user_id) -> list[dict]:
    decision = require_access(patient_id, user_id, AccessPermission.VIEW_MEDICATIONS)
    medications = (decision.patient.medications
                   .filter_by(is_active=True)
                   .order_by(PatientMedication.added_at.desc())
                   .all())
    return [m.to_dict() for m in medications]
