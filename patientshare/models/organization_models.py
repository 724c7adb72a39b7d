# /patientshare/models/organization_models.py
from datetime import datetime
from enum import StrEnum

from patientshare.extensions import db


def enum_column(enum_cls, **kwargs):
    """Stores an enum by value in a plain VARCHAR column."""
    return db.Column(
        db.Enum(enum_cls, native_enum=False, validate_strings=True, length=32,
                values_callable=lambda members: [m.value for m in members]),
        **kwargs
    )


class OrganizationType(StrEnum):
    PHARMACY = 'pharmacy'
    GP_CLINIC = 'gp_clinic'
    HOSPITAL = 'hospital'
    AGED_CARE = 'aged_care'


class MemberRole(StrEnum):
    OWNER = 'owner'
    ADMIN = 'admin'
    MEMBER = 'member'
    VIEWER = 'viewer'


class Organization(db.Model):
    """Tenant boundary. Every patient belongs to exactly one organization."""
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    type = enum_column(OrganizationType, nullable=False)
    email = db.Column(db.String(255))
    phone_number = db.Column(db.String(50))
    # use_alter breaks the organizations <-> user_profiles cycle for create_all
    owner_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id', use_alter=True, name='fk_organizations_owner'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    owner = db.relationship('UserProfile', foreign_keys=[owner_id], post_update=True)
    members = db.relationship('UserProfile', foreign_keys='UserProfile.organization_id',
                              back_populates='organization', lazy='dynamic')
    patients = db.relationship('Patient', back_populates='organization', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type.value,
            'email': self.email,
            'phone_number': self.phone_number,
            'owner_id': self.owner_id,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class UserProfile(db.Model):
    """A caller identity as supplied by the authentication subsystem, plus membership."""
    __tablename__ = 'user_profiles'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(255), nullable=False)
    last_name = db.Column(db.String(255), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), index=True)
    role = enum_column(MemberRole)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    organization = db.relationship('Organization', foreign_keys=[organization_id], back_populates='members')

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'organization_id': self.organization_id,
            'role': self.role.value if self.role else None,
            'is_active': self.is_active,
        }


class MemberInvitation(db.Model):
    """Invitation for a user to join an organization with a given role."""
    __tablename__ = 'member_invitations'

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    invited_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'), nullable=False)
    invite_token = db.Column(db.String(32), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    role = enum_column(MemberRole, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_used = db.Column(db.Boolean, default=False, nullable=False)
    used_by_id = db.Column(db.Integer, db.ForeignKey('user_profiles.id'))
    used_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    organization = db.relationship('Organization')
    invited_by = db.relationship('UserProfile', foreign_keys=[invited_by_id])
    used_by = db.relationship('UserProfile', foreign_keys=[used_by_id])

    def to_dict(self):
        return {
            'id': self.id,
            'organization_id': self.organization_id,
            'invite_token': self.invite_token,
            'email': self.email,
            'role': self.role.value,
            'expires_at': self.expires_at.isoformat(),
            'is_used': self.is_used,
        }
