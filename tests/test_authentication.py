from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from user_service.domain.authentication import MAX_RECOVERY_ATTEMPTS, AuthService
from user_service.domain.errors import InvalidCredentials, InvalidRecoveryCode, NotFound

from conftest import TEST_BCRYPT_ROUNDS


def test_login_returns_token_with_account_claims(register, auth_service, token_issuer):
    account = register(password="hunter22")

    issued = auth_service.login(account.email, "hunter22")

    claims = token_issuer.decode(issued.token)
    assert claims["sub"] == account.email
    assert claims["userId"] == account.account_id
    assert claims["userRoles"] == ["ROLE_USER"]


def test_login_reflects_current_roles(register, auth_service, repository, token_issuer):
    account = register(password="hunter22")
    repository.grant_role(account.account_id, "ROLE_ADMIN")

    claims = token_issuer.decode(auth_service.login(account.email, "hunter22").token)
    assert claims["userRoles"] == ["ROLE_ADMIN", "ROLE_USER"]


def test_wrong_password_and_unknown_email_fail_identically(register, auth_service):
    account = register(password="hunter22")

    with pytest.raises(InvalidCredentials) as wrong_password:
        auth_service.login(account.email, "nope")
    with pytest.raises(InvalidCredentials) as unknown_email:
        auth_service.login("nobody@example.com", "hunter22")

    assert type(wrong_password.value) is type(unknown_email.value)
    assert str(wrong_password.value) == str(unknown_email.value)
    assert wrong_password.value.status_code == unknown_email.value.status_code == 401


def test_deleted_account_cannot_log_in(register, account_service, auth_service):
    account = register(password="hunter22")
    account_service.delete(account.account_id, account.account_id, "")

    with pytest.raises(InvalidCredentials):
        auth_service.login(account.email, "hunter22")


def test_login_does_not_mutate_the_account(register, auth_service, repository):
    account = register(password="hunter22")
    before = repository.find_by_id(account.account_id)

    auth_service.login(account.email, "hunter22")
    with pytest.raises(InvalidCredentials):
        auth_service.login(account.email, "bad")

    assert repository.find_by_id(account.account_id) == before


def test_password_recovery_flow(register, auth_service, notifier, repository):
    account = register(password="old-password")

    auth_service.request_recovery(account.email)
    code = notifier.codes[account.email]
    assert len(code) == 6 and code.isdigit()
    stored = repository.get_recovery(account.account_id)
    assert stored.code_hash != code

    reset_token = auth_service.verify_recovery_code(account.email, code)
    auth_service.reset_password(account.email, reset_token, "new-password")

    assert auth_service.login(account.email, "new-password").token
    with pytest.raises(InvalidCredentials):
        auth_service.login(account.email, "old-password")
    assert repository.get_recovery(account.account_id) is None


def test_recovery_code_is_single_use(register, auth_service, notifier):
    account = register()
    auth_service.request_recovery(account.email)
    code = notifier.codes[account.email]

    auth_service.verify_recovery_code(account.email, code)
    with pytest.raises(InvalidRecoveryCode):
        auth_service.verify_recovery_code(account.email, code)


def test_recovery_code_attempts_are_capped(register, auth_service, notifier):
    account = register()
    auth_service.request_recovery(account.email)
    code = notifier.codes[account.email]
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(MAX_RECOVERY_ATTEMPTS):
        with pytest.raises(InvalidRecoveryCode):
            auth_service.verify_recovery_code(account.email, wrong)
    with pytest.raises(InvalidRecoveryCode):
        auth_service.verify_recovery_code(account.email, code)


def test_expired_recovery_code_is_rejected(register, repository, token_issuer, notifier):
    now = [datetime(2025, 1, 1, tzinfo=timezone.utc)]
    service = AuthService(
        repository,
        token_issuer,
        notifier=notifier,
        recovery_code_ttl=timedelta(minutes=10),
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
        clock=lambda: now[0],
    )
    account = register()
    service.request_recovery(account.email)

    now[0] += timedelta(minutes=11)
    with pytest.raises(InvalidRecoveryCode):
        service.verify_recovery_code(account.email, notifier.codes[account.email])


def test_reset_requires_a_matching_token(register, auth_service, notifier):
    account = register()
    auth_service.request_recovery(account.email)
    auth_service.verify_recovery_code(account.email, notifier.codes[account.email])

    with pytest.raises(InvalidRecoveryCode):
        auth_service.reset_password(account.email, "forged-token", "whatever")


def test_recovery_for_unknown_email(auth_service):
    with pytest.raises(NotFound):
        auth_service.request_recovery("nobody@example.com")
    with pytest.raises(InvalidRecoveryCode):
        auth_service.verify_recovery_code("nobody@example.com", "123456")


def test_every_guess_spends_an_attempt(register, auth_service, notifier, repository):
    account = register()
    auth_service.request_recovery(account.email)
    code = notifier.codes[account.email]
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(MAX_RECOVERY_ATTEMPTS - 1):
        with pytest.raises(InvalidRecoveryCode):
            auth_service.verify_recovery_code(account.email, wrong)
    assert repository.get_recovery(account.account_id).attempts == MAX_RECOVERY_ATTEMPTS - 1

    assert auth_service.verify_recovery_code(account.email, code)
    assert repository.get_recovery(account.account_id).attempts == MAX_RECOVERY_ATTEMPTS


def test_login_and_recovery_ignore_email_case(register, auth_service, notifier):
    account = register(email="Mixed.Case@Example.com", password="hunter22")
    assert account.email == "mixed.case@example.com"

    assert auth_service.login("MIXED.CASE@example.COM", "hunter22").token
    auth_service.request_recovery(" Mixed.Case@Example.com ")
    assert auth_service.verify_recovery_code("mixed.case@EXAMPLE.com", notifier.codes[account.email])
