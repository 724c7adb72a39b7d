# /patientshare/models/partnership_models.py
from datetime import datetime
from enum import StrEnum

from patientshare.extensions import db
from patientshare.models.organization_models import enum_column


class PartnershipType(StrEnum):
    DATA_SHARING = 'data_sharing'
    REFERRAL_NETWORK = 'referral_network'
    MERGER = 'merger'


class PartnershipStatus(StrEnum):
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    EXPIRED = 'expired'


class OrganizationPartnership(db.Model):
    """Organization-to-organization trust record. Confers no patient-level access."""
    __tablename__ = 'organization_partnerships'

    id = db.Column(db.Integer, primary_key=True)
    initiator_org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    # Unset until accepted
    partner_org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), index=True)
    partnership_token = db.Column(db.String(32), unique=True, nullable=False, index=True)
    partnership_type = enum_column(PartnershipType, nullable=False)
    status = enum_column(PartnershipStatus, nullable=False, default=PartnershipStatus.PENDING, index=True)
    initiated_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'), nullable=False)
    accepted_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'))
    rejected_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'))
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False)
    accepted_at = db.Column(db.DateTime)
    rejected_at = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    notes = db.Column(db.Text)

    initiator_org = db.relationship('Organization', foreign_keys=[initiator_org_id])
    partner_org = db.relationship('Organization', foreign_keys=[partner_org_id])

    def effective_status(self, now: datetime) -> PartnershipStatus:
        """A pending partnership past its window reads as expired, persisted or not."""
        if self.status == PartnershipStatus.PENDING and self.expires_at <= now:
            return PartnershipStatus.EXPIRED
        return self.status

    def to_dict(self, now: datetime | None = None):
        return {
            'id': self.id,
            'initiator_org_id': self.initiator_org_id,
            'partner_org_id': self.partner_org_id,
            'partnership_token': self.partnership_token,
            'partnership_type': self.partnership_type.value,
            'status': (self.effective_status(now) if now else self.status).value,
            'initiated_by_id': self.initiated_by_id,
            'accepted_by_id': self.accepted_by_id,
            'expires_at': self.expires_at.isoformat(),
            'created_at': self.created_at.isoformat(),
            'accepted_at': self.accepted_at.isoformat() if self.accepted_at else None,
            'notes': self.notes,
        }
