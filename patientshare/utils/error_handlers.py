# /patientshare/utils/error_handlers.py
from flask import jsonify, current_app

from patientshare.extensions import db, jwt
from patientshare.errors import AccessControlError, AuditWriteError


def register_error_handlers(app):
    @app.errorhandler(AccessControlError)
    def access_control_error(error):
        if isinstance(error, AuditWriteError):
            current_app.audit_logger.error(f"Action='AUDIT_WRITE_FAILED', Details='{error.message}'")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Resource not found', 'code': 'not_found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed', 'code': 'method_not_allowed'}), 405

    @app.errorhandler(429)
    def rate_limited(error):
        current_app.audit_logger.warning(f"Action='RATE_LIMITED', Details='{error.description}'")
        return jsonify({'error': 'Too many requests', 'code': 'rate_limited'}), 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        current_app.audit_logger.error(f"Internal server error: {str(error)}")
        return jsonify({'error': 'Internal server error', 'code': 'internal_error'}), 500

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({'error': reason, 'code': 'unauthorized'}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({'error': reason, 'code': 'unauthorized'}), 401

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return jsonify({'error': 'Token has expired', 'code': 'unauthorized'}), 401
