# /patientshare/models/patient_models.py
from datetime import datetime
from enum import StrEnum

from patientshare.extensions import db
from patientshare.models.organization_models import enum_column


class PreferredPack(StrEnum):
    BLISTER = 'blister'
    SACHETS = 'sachets'


class CommentType(StrEnum):
    NOTE = 'note'
    CHAT = 'chat'
    SYSTEM = 'system'


class Patient(db.Model):
    """Model for storing encrypted patient information."""
    __tablename__ = 'patients'

    id = db.Column(db.Integer, primary_key=True)

    # Generated once at creation, never reassigned
    share_token = db.Column(db.String(32), unique=True, nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)

    # --- Encrypted Patient PII ---
    first_name = db.Column(db.String(512), nullable=False)
    last_name = db.Column(db.String(512), nullable=False)
    date_of_birth = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(512))
    phone = db.Column(db.String(255))
    street_address = db.Column(db.String(1024))
    suburb = db.Column(db.String(512))
    state = db.Column(db.String(255))
    postcode = db.Column(db.String(255))

    # --- Non-encrypted fields ---
    preferred_pack = enum_column(PreferredPack, default=PreferredPack.BLISTER)

    created_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    organization = db.relationship('Organization', back_populates='patients')
    created_by = db.relationship('UserProfile')
    access_grants = db.relationship('TokenAccessGrant', back_populates='patient', lazy='dynamic')
    access_logs = db.relationship('ShareTokenAccessLog', back_populates='patient', lazy='dynamic')
    comments = db.relationship('PatientComment', back_populates='patient', lazy='dynamic')
    medications = db.relationship('PatientMedication', back_populates='patient', lazy='dynamic')


class PatientComment(db.Model):
    """Comment thread entry on a patient record."""
    __tablename__ = 'patient_comments'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('patients.id'), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'), nullable=False, index=True)
    author_org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)  # Encrypted
    comment_type = enum_column(CommentType, nullable=False, default=CommentType.NOTE)
    # Private comments are only visible to the author's organization
    is_private = db.Column(db.Boolean, default=False, nullable=False)
    reply_to_id = db.Column(db.Integer, db.ForeignKey('patient_comments.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    patient = db.relationship('Patient', back_populates='comments')
    author = db.relationship('UserProfile')
    author_org = db.relationship('Organization')


class PatientMedication(db.Model):
    """A medication entry on a patient record."""
    __tablename__ = 'patient_medications'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('patients.id'), nullable=False, index=True)
    # Which organization added this medication
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    medication_name = db.Column(db.String(255), nullable=False)
    dosage = db.Column(db.String(255), nullable=False)
    instructions = db.Column(db.Text)
    added_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'), nullable=False)
    added_at = db.Column(db.DateTime, default=datetime.utcnow)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    patient = db.relationship('Patient', back_populates='medications')
    added_by = db.relationship('UserProfile')

    def to_dict(self):
        return {
            'id': self.id,
            'patient_id': self.patient_id,
            'organization_id': self.organization_id,
            'medication_name': self.medication_name,
            'dosage': self.dosage,
            'instructions': self.instructions,
            'added_by_id': self.added_by_id,
            'added_at': self.added_at.isoformat() if self.added_at else None,
            'is_active': self.is_active,
        }
