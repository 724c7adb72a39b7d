from functools import wraps

from flask import request, current_app, make_response
from flask_jwt_extended import get_jwt_identity
from sqlalchemy.exc import SQLAlchemyError

from patientshare.extensions import db
from patientshare.models.system_models import AuditLog


def _identity():
    try:
        identity = get_jwt_identity()
    except RuntimeError:
        # No JWT in this request
        return None
    return int(identity) if identity is not None else None


def _write_audit_row(**fields):
    try:
        db.session.add(AuditLog(**fields))
        db.session.commit()
    except SQLAlchemyError as db_error:
        current_app.audit_logger.error(f"Failed to log audit entry due to DB error: {db_error}")
        db.session.rollback()


def audit_log(action, resource):
    """Logs API actions for HIPAA compliance."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_id = _identity()
            # The first URL parameter identifies the resource (patient id, grant id, token...)
            resource_id = str(next(iter(kwargs.values()))) if kwargs else None
            ip_address = request.remote_addr
            user_agent = request.headers.get('User-Agent')

            try:
                response = make_response(f(*args, **kwargs))
            except Exception as e:
                db.session.rollback()
                details = f"An error occurred: {str(e)}"
                _write_audit_row(user_id=user_id, action=action, resource=resource, resource_id=resource_id,
                                 ip_address=ip_address, user_agent=user_agent, success=False, details=details)
                current_app.audit_logger.error(
                    f"Action='{action}', Resource='{resource}', UserID='{user_id}', Success='False', Details='{details}'"
                )
                raise

            success = response.status_code < 400
            details = f"Request successful. Status: {response.status_code}" if success \
                else f"Request failed. Status: {response.status_code}"
            _write_audit_row(user_id=user_id, action=action, resource=resource, resource_id=resource_id,
                             ip_address=ip_address, user_agent=user_agent, success=success, details=details)
            current_app.audit_logger.info(
                f"Action='{action}', Resource='{resource}', UserID='{user_id}', Success='{success}', Details='{details}'"
            )
            return response

        return decorated_function
    return decorator
