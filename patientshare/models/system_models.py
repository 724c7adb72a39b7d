# /patientshare/models/system_models.py
from datetime import datetime

from sqlalchemy import event

from patientshare.extensions import db
from patientshare.models.access_models import AccessType
from patientshare.models.organization_models import enum_column


class AuditLog(db.Model):
    """HIPAA-required audit logging of API actions"""
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'))
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    action = db.Column(db.String(100), nullable=False)
    resource = db.Column(db.String(100))
    resource_id = db.Column(db.String(100))
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(255))
    success = db.Column(db.Boolean, default=True)
    details = db.Column(db.Text)


class ShareTokenAccessLog(db.Model):
    """Append-only record of every patient view made through a share token."""
    __tablename__ = 'share_token_access_logs'
    __table_args__ = (
        db.Index('ix_share_token_access_logs_patient_time', 'patient_id', 'accessed_at'),
        db.Index('ix_share_token_access_logs_accessor_time', 'accessed_by_id', 'accessed_at'),
    )

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('patients.id'), nullable=False)
    accessed_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'), nullable=False)
    accessed_by_org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    patient_org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    share_token = db.Column(db.String(32), nullable=False, index=True)
    access_type = enum_column(AccessType, nullable=False)
    accessed_at = db.Column(db.DateTime, nullable=False, index=True)

    patient = db.relationship('Patient', back_populates='access_logs')

    def to_dict(self):
        return {
            'id': self.id,
            'patient_id': self.patient_id,
            'accessed_by_id': self.accessed_by_id,
            'accessed_by_org_id': self.accessed_by_org_id,
            'patient_org_id': self.patient_org_id,
            'share_token': self.share_token,
            'access_type': self.access_type.value,
            'accessed_at': self.accessed_at.isoformat(),
        }


@event.listens_for(ShareTokenAccessLog, 'before_update')
def _reject_access_log_update(mapper, connection, target):
    raise ValueError('share token access log entries are immutable')


@event.listens_for(ShareTokenAccessLog, 'before_delete')
def _reject_access_log_delete(mapper, connection, target):
    raise ValueError('share token access log entries cannot be deleted')
