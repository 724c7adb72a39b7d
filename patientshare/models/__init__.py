from patientshare.models.organization_models import Organization, OrganizationType, UserProfile, MemberRole, MemberInvitation
from patientshare.models.patient_models import Patient, PatientComment, PatientMedication, PreferredPack, CommentType
from patientshare.models.access_models import (
    TokenAccessGrant, GrantStatus, AccessType, AccessPermission,
    GRANTABLE_PERMISSIONS, FULL_PERMISSIONS,
)
from patientshare.models.partnership_models import OrganizationPartnership, PartnershipType, PartnershipStatus
from patientshare.models.system_models import AuditLog, ShareTokenAccessLog
