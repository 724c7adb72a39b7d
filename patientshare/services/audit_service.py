# /patientshare/services/audit_service.py
"""Share-token access log.

One row per patient view made through a share token by a caller outside
the owning organization. Writing the row is part of the access itself: if
it cannot be written the access fails.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from patientshare.extensions import db
from patientshare.errors import AuditWriteError, Forbidden, NotFound
from patientshare.models.access_models import AccessType
from patientshare.models.patient_models import Patient
from patientshare.models.system_models import ShareTokenAccessLog
from patientshare.services.membership_service import Membership, resolve_membership
from patientshare.utils import clock
from patientshare.utils.audit_util import log_audit_event

logger = logging.getLogger(__name__)


def record_access(patient: Patient, accessor: Membership, share_token: str,
                  access_type: AccessType) -> ShareTokenAccessLog:
    entry = ShareTokenAccessLog(
        patient_id=patient.id,
        accessed_by_id=accessor.user_id,
        accessed_by_org_id=accessor.organization_id,
        patient_org_id=patient.organization_id,
        share_token=share_token,
        access_type=access_type,
        accessed_at=clock.utcnow(),
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Share token access log write failed for patient %s: %s", patient.id, exc)
        raise AuditWriteError('Access could not be recorded; access refused') from exc

    log_audit_event('SHARE_TOKEN_ACCESS', UserID=accessor.user_id, OrgID=accessor.organization_id,
                    PatientID=patient.id, PatientOrgID=patient.organization_id,
                    AccessType=access_type.value)
    return entry


def list_access_log(patient_id, user_id, limit=100):
    """Access history for a patient, newest first. Owning organization only."""
    membership = resolve_membership(user_id)
    patient = db.session.get(Patient, patient_id)
    if patient is None:
        raise NotFound('Patient not found')
    if patient.organization_id != membership.organization_id:
        raise Forbidden('Only the owning organization can view the access log')

    return (ShareTokenAccessLog.query
            .filter_by(patient_id=patient_id)
            .order_by(ShareTokenAccessLog.accessed_at.desc(), ShareTokenAccessLog.id.desc())
            .limit(limit)
            .all())


def list_my_access_history(user_id, limit=100):
    membership = resolve_membership(user_id)
    return (ShareTokenAccessLog.query
            .filter_by(accessed_by_id=membership.user_id)
            .order_by(ShareTokenAccessLog.accessed_at.desc(), ShareTokenAccessLog.id.desc())
            .limit(limit)
            .all())
