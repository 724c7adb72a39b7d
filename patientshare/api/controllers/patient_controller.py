from flask import request, jsonify
from flask_jwt_extended import get_jwt_identity

from patientshare.errors import ValidationError
from patientshare.services import patient_service


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def create_patient():
    """Creates a patient in the caller's organization and returns its share token."""
    user_id = get_jwt_identity()
    patient_id, share_token = patient_service.create_patient(user_id, _json_body())
    return jsonify({
        'message': 'Patient created successfully',
        'patient_id': patient_id,
        'share_token': share_token,
        'patient': patient_service.get_patient(patient_id, user_id),
    }), 201


def list_patients():
    limit = request.args.get('limit', type=int)
    offset = request.args.get('offset', default=0, type=int)
    patients = patient_service.list_accessible_patients(get_jwt_identity(), limit=limit, offset=offset)
    return jsonify({'patients': patients, 'count': len(patients)}), 200


def get_patient(patient_id):
    return jsonify(patient_service.get_patient(patient_id, get_jwt_identity())), 200


def update_patient(patient_id):
    patient = patient_service.update_patient(patient_id, get_jwt_identity(), _json_body())
    return jsonify({'message': 'Patient updated successfully', 'patient': patient}), 200


def delete_patient(patient_id):
    patient_service.deactivate_patient(patient_id, get_jwt_identity())
    return jsonify({'message': 'Patient deactivated successfully'}), 200


def get_patient_by_share_token(token):
    patient = patient_service.get_patient_by_share_token(token, get_jwt_identity())
    if patient is None:
        # Unknown token and no access look the same to the caller
        return jsonify({'error': 'Patient not found or access not granted', 'code': 'not_found'}), 404
    return jsonify(patient), 200


def add_comment(patient_id):
    data = _json_body()
    comment = patient_service.add_comment(
        patient_id, get_jwt_identity(), data.get('content'),
        comment_type=data.get('comment_type', 'note'),
        is_private=data.get('is_private', False),
        reply_to_id=data.get('reply_to_id'),
    )
    return jsonify({'message': 'Comment added', 'comment': comment}), 201


def list_comments(patient_id):
    return jsonify({'comments': patient_service.list_comments(patient_id, get_jwt_identity())}), 200


def add_medication(patient_id):
    medication = patient_service.add_medication(patient_id, get_jwt_identity(), _json_body())
    return jsonify({'message': 'Medication added', 'medication': medication}), 201


def list_medications(patient_id):
    return jsonify({'medications': patient_service.list_medications(patient_id, get_jwt_identity())}), 200


def update_medication(patient_id, medication_id):
    medication = patient_service.update_medication(patient_id, medication_id, get_jwt_identity(), _json_body())
    return jsonify({'message': 'Medication updated', 'medication': medication}), 200
