from flask import request, jsonify
from flask_jwt_extended import get_jwt_identity

from patientshare.errors import ValidationError
from patientshare.services import partnership_service
from patientshare.utils import clock


def create_partnership():
    data = request.get_json(silent=True) or {}
    if not data.get('partnership_type'):
        raise ValidationError('Missing required field: partnership_type')
    partnership = partnership_service.create_partnership(
        get_jwt_identity(), data['partnership_type'], notes=data.get('notes'))
    return jsonify({'message': 'Partnership invitation created',
                    'partnership': partnership.to_dict(clock.utcnow())}), 201


def list_partnerships():
    now = clock.utcnow()
    partnerships = partnership_service.list_partnerships(get_jwt_identity())
    return jsonify({'partnerships': [p.to_dict(now) for p in partnerships]}), 200


def accept_partnership(token):
    partnership = partnership_service.accept_partnership(token, get_jwt_identity())
    return jsonify({'message': 'Partnership accepted', 'partnership': partnership.to_dict(clock.utcnow())}), 200


def reject_partnership(token):
    partnership = partnership_service.reject_partnership(token, get_jwt_identity())
    return jsonify({'message': 'Partnership rejected', 'partnership': partnership.to_dict(clock.utcnow())}), 200
