# /patientshare/models/access_models.py
from datetime import datetime
from enum import StrEnum

from patientshare.extensions import db
from patientshare.models.organization_models import enum_column


class GrantStatus(StrEnum):
    PENDING = 'pending'
    APPROVED = 'approved'
    DENIED = 'denied'
    REVOKED = 'revoked'


class AccessType(StrEnum):
    SAME_ORGANIZATION = 'same_organization'
    CROSS_ORGANIZATION = 'cross_organization'


class AccessPermission(StrEnum):
    VIEW = 'view'
    EDIT = 'edit'
    COMMENT = 'comment'
    VIEW_MEDICATIONS = 'view_medications'


# What another organization can be granted; EDIT stays with the owning organization.
GRANTABLE_PERMISSIONS = frozenset({
    AccessPermission.VIEW,
    AccessPermission.COMMENT,
    AccessPermission.VIEW_MEDICATIONS,
})
FULL_PERMISSIONS = frozenset(AccessPermission)

# Legal transitions; DENIED and REVOKED are terminal.
GRANT_TRANSITIONS = {
    GrantStatus.PENDING: frozenset({GrantStatus.APPROVED, GrantStatus.DENIED}),
    GrantStatus.APPROVED: frozenset({GrantStatus.REVOKED}),
    GrantStatus.DENIED: frozenset(),
    GrantStatus.REVOKED: frozenset(),
}


class TokenAccessGrant(db.Model):
    """One organization member's standing permission to access one patient's record."""
    __tablename__ = 'token_access_grants'
    __table_args__ = (
        # At most one open grant (pending or approved) per patient and grantee.
        db.Index(
            'uq_token_access_grants_open_per_grantee',
            'patient_id', 'granted_to_id',
            unique=True,
            sqlite_where=db.text('is_active = 1'),
            postgresql_where=db.text('is_active'),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('patients.id'), nullable=False, index=True)
    share_token = db.Column(db.String(32), nullable=False, index=True)

    granted_to_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'), nullable=False, index=True)
    granted_to_org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)
    # Absent when the grant came from self-service share-token redemption
    granted_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'))
    granted_by_org_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False)

    access_type = enum_column(AccessType, nullable=False, default=AccessType.CROSS_ORGANIZATION)
    status = enum_column(GrantStatus, nullable=False, default=GrantStatus.PENDING, index=True)
    permissions = db.Column(db.JSON, nullable=False, default=list)
    expires_at = db.Column(db.DateTime, index=True)  # None means never expires
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    requested_at = db.Column(db.DateTime, nullable=False)
    granted_at = db.Column(db.DateTime)
    denied_at = db.Column(db.DateTime)
    denied_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'))
    revoked_at = db.Column(db.DateTime)
    revoked_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'))
    superseded_at = db.Column(db.DateTime)

    patient = db.relationship('Patient', back_populates='access_grants')
    granted_to = db.relationship('UserProfile', foreign_keys=[granted_to_id])
    granted_to_org = db.relationship('Organization', foreign_keys=[granted_to_org_id])
    granted_by = db.relationship('UserProfile', foreign_keys=[granted_by_id])

    def permission_set(self):
        return frozenset(AccessPermission(p) for p in (self.permissions or []))

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_live(self, now: datetime) -> bool:
        """Approved, active and not past its expiry instant."""
        return (self.status == GrantStatus.APPROVED
                and self.is_active
                and not self.is_expired(now))

    def can_transition_to(self, target: GrantStatus) -> bool:
        return target in GRANT_TRANSITIONS[self.status]

    @classmethod
    def live_filter(cls, now: datetime):
        """SQL criteria equivalent to ``is_live``."""
        return db.and_(
            cls.status == GrantStatus.APPROVED,
            cls.is_active.is_(True),
            db.or_(cls.expires_at.is_(None), cls.expires_at > now),
        )

    def to_dict(self, now: datetime | None = None):
        data = {
            'id': self.id,
            'patient_id': self.patient_id,
            'share_token': self.share_token,
            'granted_to_id': self.granted_to_id,
            'granted_to_org_id': self.granted_to_org_id,
            'granted_by_id': self.granted_by_id,
            'granted_by_org_id': self.granted_by_org_id,
            'access_type': self.access_type.value,
            'status': self.status.value,
            'permissions': sorted(self.permissions or []),
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'is_active': self.is_active,
            'requested_at': self.requested_at.isoformat() if self.requested_at else None,
            'granted_at': self.granted_at.isoformat() if self.granted_at else None,
            'denied_at': self.denied_at.isoformat() if self.denied_at else None,
            'revoked_at': self.revoked_at.isoformat() if self.revoked_at else None,
        }
        if now is not None:
            data['is_live'] = self.is_live(now)
            data['is_expired'] = self.is_expired(now)
        return data
