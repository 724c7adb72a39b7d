# /patientshare/utils/audit_util.py
from flask import current_app


def _format(action, fields):
    parts = [f"Action='{action}'"]
    parts.extend(f"{key}='{value}'" for key, value in fields.items())
    return ', '.join(parts)


def log_audit_event(action: str, **fields):
    """Writes one line to the HIPAA audit log."""
    current_app.audit_logger.info(_format(action, fields))


def log_audit_refusal(action: str, **fields):
    current_app.audit_logger.warning(_format(action, fields))
