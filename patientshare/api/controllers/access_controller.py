from datetime import datetime, timezone

from flask import request, jsonify
from flask_jwt_extended import get_jwt_identity

from patientshare.errors import ValidationError
from patientshare.services import access_service, audit_service, grant_service
from patientshare.utils import clock


def _parse_datetime(value):
    """Parses an ISO-8601 timestamp into naive UTC."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError('expires_at must be an ISO-8601 timestamp')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_days(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError('expires_in_days must be an integer')
    return value


def _grant_terms(data):
    return {
        'permissions': data.get('permissions'),
        'expires_at': _parse_datetime(data.get('expires_at')),
        'expires_in_days': _parse_days(data.get('expires_in_days')),
    }


def get_access_decision(patient_id):
    """Reports what the caller may do with a patient, without raising on denial."""
    decision = access_service.decide_access(patient_id, get_jwt_identity())
    return jsonify(decision.to_dict()), 200


def request_access(token):
    result = grant_service.request_access(token, get_jwt_identity())
    status = 201 if result.outcome == grant_service.RequestOutcome.CREATED else 200
    return jsonify(result.to_dict(clock.utcnow())), status


def list_patient_grants(patient_id):
    now = clock.utcnow()
    grants = grant_service.list_patient_grants(patient_id, get_jwt_identity())
    return jsonify({'grants': [g.to_dict(now) for g in grants]}), 200


def grant_access(patient_id):
    data = request.get_json(silent=True) or {}
    try:
        grantee_id = int(data['user_id'])
    except (KeyError, TypeError, ValueError):
        raise ValidationError('Missing or invalid field: user_id')
    grant = grant_service.grant_access(patient_id, get_jwt_identity(), grantee_id, **_grant_terms(data))
    return jsonify({'message': 'Access granted', 'grant': grant.to_dict(clock.utcnow())}), 201


def approve_access(grant_id):
    data = request.get_json(silent=True) or {}
    grant = grant_service.approve_access(grant_id, get_jwt_identity(), **_grant_terms(data))
    return jsonify({'message': 'Access approved', 'grant': grant.to_dict(clock.utcnow())}), 200


def deny_access(grant_id):
    grant = grant_service.deny_access(grant_id, get_jwt_identity())
    return jsonify({'message': 'Access denied', 'grant': grant.to_dict(clock.utcnow())}), 200


def revoke_access(grant_id):
    grant = grant_service.revoke_access(grant_id, get_jwt_identity())
    return jsonify({'message': 'Access revoked', 'grant': grant.to_dict(clock.utcnow())}), 200


def list_my_grants():
    now = clock.utcnow()
    grants = grant_service.list_my_grants(get_jwt_identity())
    return jsonify({'grants': [g.to_dict(now) for g in grants]}), 200


def list_pending_requests():
    now = clock.utcnow()
    grants = grant_service.list_pending_requests(get_jwt_identity())
    return jsonify({'requests': [g.to_dict(now) for g in grants]}), 200


def get_access_log(patient_id):
    limit = request.args.get('limit', default=100, type=int)
    entries = audit_service.list_access_log(patient_id, get_jwt_identity(), limit=limit)
    return jsonify({'access_log': [e.to_dict() for e in entries]}), 200
