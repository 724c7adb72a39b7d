"""
Unit tests for share, partnership and invitation token generation.
"""

import pytest

from patientshare.errors import TokenGenerationError
from patientshare.services import token_service


# ── Tests: generate_token ────────────────────────────────────────────

def test_generate_token_format():
    token = token_service.generate_token('PAT')
    assert token_service.is_well_formed(token, 'PAT')
    prefix, *groups = token.split('-')
    assert prefix == 'PAT'
    assert len(groups) == 3
    assert all(len(g) == 4 for g in groups)


def test_generate_token_uses_only_uppercase_and_digits():
    body = token_service.generate_token('PRT')[4:].replace('-', '')
    assert set(body) <= set(token_service.TOKEN_ALPHABET)


def test_ten_thousand_tokens_are_distinct():
    tokens = {token_service.generate_token('PAT') for _ in range(10_000)}
    assert len(tokens) == 10_000


@pytest.mark.parametrize("token,prefix,expected", [
    ("PAT-AB12-CD34-EF56", "PAT", True),
    ("PRT-AB12-CD34-EF56", "PAT", False),
    ("PAT-ab12-CD34-EF56", "PAT", False),
    ("PAT-AB12-CD34", "PAT", False),
    ("", "PAT", False),
])
def test_is_well_formed(token, prefix, expected):
    assert token_service.is_well_formed(token, prefix) is expected


def test_normalize_token():
    assert token_service.normalize_token("  pat-ab12-cd34-ef56 ") == "PAT-AB12-CD34-EF56"
    assert token_service.normalize_token(None) == ""


# ── Tests: issue_unique_token ────────────────────────────────────────

def test_issue_unique_token_retries_on_collision(monkeypatch):
    produced = iter(["PAT-AAAA-AAAA-AAAA", "PAT-AAAA-AAAA-AAAA", "PAT-BBBB-BBBB-BBBB"])
    monkeypatch.setattr(token_service, 'generate_token', lambda prefix: next(produced))
    taken = {"PAT-AAAA-AAAA-AAAA"}

    token = token_service.issue_unique_token('PAT', taken.__contains__, max_attempts=5)

    assert token == "PAT-BBBB-BBBB-BBBB"


def test_issue_unique_token_gives_up_after_max_attempts(monkeypatch):
    calls = []

    def always_same(prefix):
        calls.append(prefix)
        return "PAT-AAAA-AAAA-AAAA"

    monkeypatch.setattr(token_service, 'generate_token', always_same)

    with pytest.raises(TokenGenerationError):
        token_service.issue_unique_token('PAT', lambda t: True, max_attempts=3)
    assert len(calls) == 3


def test_issue_unique_token_reads_attempts_from_config(app, monkeypatch):
    app.config['TOKEN_GENERATION_MAX_ATTEMPTS'] = 2
    calls = []
    monkeypatch.setattr(token_service, 'generate_token', lambda prefix: calls.append(prefix) or "X")

    with pytest.raises(TokenGenerationError):
        token_service.issue_unique_token('INV', lambda t: True)
    assert len(calls) == 2


def test_namespace_prefixes_come_from_config(app):
    assert token_service.share_token_prefix() == 'PAT'
    assert token_service.partnership_token_prefix() == 'PRT'
    assert token_service.invite_token_prefix() == 'INV'


def test_patient_share_token_is_assigned_at_creation(two_orgs, make_patient):
    patient = make_patient(two_orgs['pharmacy_owner'])
    assert token_service.is_well_formed(patient.share_token, 'PAT')
