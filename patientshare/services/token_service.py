# /patientshare/services/token_service.py
"""Share, partnership and invitation tokens.

Tokens look like ``PAT-7QK2-M9XD-41ZB``: a namespace prefix followed by three
groups of four characters drawn from ``secrets`` (uppercase letters and
digits, roughly 62 bits of entropy). Uniqueness is checked before insert and
backed by a unique constraint on every token column.
"""
import logging
import re
import secrets
import string

from flask import current_app

from patientshare.errors import TokenGenerationError

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_uppercase + string.digits
GROUP_SIZE = 4
GROUP_COUNT = 3


def generate_token(prefix: str) -> str:
    """Generates one token in the given namespace."""
    body = ''.join(secrets.choice(TOKEN_ALPHABET) for _ in range(GROUP_SIZE * GROUP_COUNT))
    groups = [body[i:i + GROUP_SIZE] for i in range(0, len(body), GROUP_SIZE)]
    return '-'.join([prefix, *groups])


def issue_unique_token(prefix: str, exists, max_attempts: int | None = None) -> str:
    """Generates tokens until ``exists(token)`` is false.

    ``exists`` is a lookup against the namespace's storage. Collisions are
    retried, never overwritten; after ``max_attempts`` the caller gets a
    TokenGenerationError.
    """
    if max_attempts is None:
        max_attempts = current_app.config.get('TOKEN_GENERATION_MAX_ATTEMPTS', 5)

    for attempt in range(1, max_attempts + 1):
        token = generate_token(prefix)
        if not exists(token):
            return token
        logger.warning("Token collision in namespace %s (attempt %d)", prefix, attempt)

    raise TokenGenerationError(f'Could not generate a unique {prefix} token after {max_attempts} attempts')


def normalize_token(raw: str | None) -> str:
    """Uppercases and trims user-entered tokens."""
    return (raw or '').strip().upper()


def is_well_formed(token: str, prefix: str) -> bool:
    pattern = rf'{re.escape(prefix)}(-[A-Z0-9]{{{GROUP_SIZE}}}){{{GROUP_COUNT}}}'
    return re.fullmatch(pattern, token or '') is not None


def share_token_prefix():
    return current_app.config['SHARE_TOKEN_PREFIX']


def partnership_token_prefix():
    return current_app.config['PARTNERSHIP_TOKEN_PREFIX']


def invite_token_prefix():
    return current_app.config['INVITE_TOKEN_PREFIX']
