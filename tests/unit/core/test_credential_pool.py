import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from stockmeta.core.services.credential_pool import (
    CredentialPoolManager,
    status_from_outcome,
    status_from_probe,
)
from stockmeta.domain.errors import (
    AuthError,
    ConfigurationError,
    OutputParseError,
    ProviderError,
    QuotaExhaustedError,
    RateLimitedError,
    TransientNetworkError,
)
from stockmeta.domain.events import CredentialStatusChanged
from stockmeta.domain.models.credentials import CredentialStatus, Provider

VALID = CredentialStatus.VALID
TESTING = CredentialStatus.TESTING
INVALID = CredentialStatus.INVALID
RATE_LIMITED = CredentialStatus.RATE_LIMITED
EXHAUSTED = CredentialStatus.EXHAUSTED


@pytest.mark.parametrize(
    "status_code,expected",
    [
        (200, VALID),
        (401, INVALID),
        (402, EXHAUSTED),
        (429, RATE_LIMITED),
        (400, VALID),
        (404, VALID),
        (None, TESTING),
        (403, INVALID),
        (500, INVALID),
    ],
)
def test_status_from_probe(status_code, expected):
    assert status_from_probe(status_code) is expected


@pytest.mark.parametrize(
    "outcome,expected",
    [
        (200, VALID),
        (401, INVALID),
        (402, EXHAUSTED),
        (429, RATE_LIMITED),
        (500, None),
        (None, None),
        (RateLimitedError("x"), RATE_LIMITED),
        (QuotaExhaustedError("x"), EXHAUSTED),
        (AuthError("x"), INVALID),
        (TransientNetworkError("x"), None),
        (OutputParseError("x"), None),
        (ProviderError("x", status_code=503), None),
        (EXHAUSTED, EXHAUSTED),
    ],
)
def test_status_from_outcome(outcome, expected):
    assert status_from_outcome(outcome) is expected


def test_validation_mapping_through_pool(pool, make_probe):
    """Mocked probe answers {200,401,402,429,400} map to {valid,invalid,exhausted,rate_limited,valid}."""
    answers = {"k200": 200, "k401": 401, "k402": 402, "k429": 429, "k400": 400}
    pool.probe = make_probe(answers)
    creds = {secret: pool.add(Provider.OPENAI, secret) for secret in answers}

    statuses = {
        secret: asyncio.run(pool.validate(Provider.OPENAI, cred.id))
        for secret, cred in creds.items()
    }

    assert statuses == {
        "k200": VALID,
        "k401": INVALID,
        "k402": EXHAUSTED,
        "k429": RATE_LIMITED,
        "k400": VALID,
    }
    assert all(c.last_checked == 1000.0 for c in pool.credentials(Provider.OPENAI))


def test_new_credentials_go_to_front(pool):
    first = pool.add("Groq", "key-one")
    second = pool.add("Groq", "key-two")

    assert [c.id for c in pool.credentials("Groq")] == [second.id, first.id]


def test_add_many_keeps_given_order(pool):
    added = pool.add_many(Provider.GROQ, ["a-key", "b-key", "  ", "c-key"])

    assert [c.secret for c in added] == ["a-key", "b-key", "c-key"]
    assert [c.secret for c in pool.credentials(Provider.GROQ)] == ["a-key", "b-key", "c-key"]


def test_duplicate_secret_returns_existing_credential(pool):
    original = pool.add(Provider.OPENAI, "sk-same")

    assert pool.add(Provider.OPENAI, " sk-same ") is original
    assert len(pool.credentials(Provider.OPENAI)) == 1


def test_empty_secret_is_rejected(pool):
    with pytest.raises(ValueError):
        pool.add(Provider.OPENAI, "   ")


def test_provider_enum_and_name_share_a_pool(pool):
    cred = pool.add(Provider.GITHUB, "ghp-token")

    assert pool.get("GitHub Models", cred.id) is cred
    assert pool.providers() == ["GitHub Models"]


def test_eligible_filters_and_preserves_order(pool):
    pool.add_many(Provider.OPENAI, ["k1", "k2", "k3", "k4", "k5"])
    by_secret = {c.secret: c for c in pool.credentials(Provider.OPENAI)}
    by_secret["k1"].status = VALID
    by_secret["k2"].status = INVALID
    by_secret["k3"].status = RATE_LIMITED
    by_secret["k4"].status = EXHAUSTED
    # k5 stays testing

    assert [c.secret for c in pool.eligible(Provider.OPENAI)] == ["k1", "k5"]
    assert pool.eligible("Unknown Provider") == []


def test_promote_moves_credential_to_front(pool):
    pool.add_many(Provider.OPENAI, ["k1", "k2", "k3"])
    k3 = pool.credentials(Provider.OPENAI)[2]

    pool.promote(Provider.OPENAI, k3.id)

    assert [c.secret for c in pool.credentials(Provider.OPENAI)] == ["k3", "k1", "k2"]
    with pytest.raises(KeyError):
        pool.promote(Provider.OPENAI, "missing")


def test_remove(pool):
    cred = pool.add(Provider.MISTRAL, "m-key")

    assert pool.remove(Provider.MISTRAL, cred.id) is cred
    assert pool.credentials(Provider.MISTRAL) == []
    with pytest.raises(KeyError):
        pool.remove(Provider.MISTRAL, cred.id)


def test_record_outcome_demotes_valid_credential(pool, events):
    cred = pool.add(Provider.OPENAI, "k1", status=VALID)

    assert pool.record_outcome(Provider.OPENAI, cred.id, RateLimitedError("429")) is RATE_LIMITED
    assert pool.eligible(Provider.OPENAI) == []
    assert cred.last_used == 1000.0

    changed = [e for e in events if isinstance(e, CredentialStatusChanged)]
    assert len(changed) == 1
    assert (changed[0].old_status, changed[0].new_status, changed[0].source) == ("valid", "rate_limited", "outcome")


def test_record_outcome_quota_marks_exhausted(pool):
    cred = pool.add(Provider.DEEPSEEK, "k1", status=VALID)

    assert pool.record_outcome(Provider.DEEPSEEK, cred.id, 402) is EXHAUSTED


def test_record_outcome_success_confirms_testing_credential(pool):
    cred = pool.add(Provider.OPENAI, "k1")

    assert pool.record_outcome(Provider.OPENAI, cred.id, 200) is VALID


@pytest.mark.parametrize("sticky", [INVALID, RATE_LIMITED, EXHAUSTED])
def test_record_outcome_never_lifts_sticky_statuses(pool, sticky):
    cred = pool.add(Provider.OPENAI, "k1", status=sticky)

    assert pool.record_outcome(Provider.OPENAI, cred.id, 200) is sticky
    assert pool.record_outcome(Provider.OPENAI, cred.id, 429) is sticky
    assert cred.status is sticky


@pytest.mark.parametrize("outcome", [500, None, TransientNetworkError("x"), OutputParseError("x")])
def test_transient_outcomes_leave_status_unchanged(pool, outcome):
    cred = pool.add(Provider.OPENAI, "k1", status=VALID)

    assert pool.record_outcome(Provider.OPENAI, cred.id, outcome) is VALID


def test_validate_recovers_rate_limited_credential_and_promotes_it(pool, make_probe, events):
    pool.probe = make_probe({"k1": 200, "k2": 200})
    pool.add_many(Provider.OPENAI, ["k1", "k2"])
    k2 = pool.credentials(Provider.OPENAI)[1]
    k2.status = RATE_LIMITED

    status = asyncio.run(pool.validate(Provider.OPENAI, k2.id))

    assert status is VALID
    assert pool.credentials(Provider.OPENAI)[0] is k2
    assert any(
        isinstance(e, CredentialStatusChanged) and e.source == "validate" and e.new_status == "valid"
        for e in events
    )


def test_validate_network_failure_leaves_testing(pool, make_probe):
    pool.probe = make_probe({"k1": None})
    cred = pool.add(Provider.OPENROUTER, "k1")

    assert asyncio.run(pool.validate(Provider.OPENROUTER, cred.id)) is TESTING
    assert cred in pool.eligible(Provider.OPENROUTER)


def test_validate_requires_probe(pool):
    cred = pool.add(Provider.OPENAI, "k1")

    with pytest.raises(ConfigurationError):
        asyncio.run(pool.validate(Provider.OPENAI, cred.id))


def test_validate_unknown_credential(pool, make_probe):
    pool.probe = make_probe({})

    with pytest.raises(KeyError):
        asyncio.run(pool.validate(Provider.OPENAI, "missing"))


def test_validate_all_keeps_pool_order(pool, make_probe):
    pool.probe = make_probe({"k1": 401, "k2": 200, "k3": 429})
    pool.add_many(Provider.GROQ, ["k1", "k2", "k3"])
    ids = [c.id for c in pool.credentials(Provider.GROQ)]

    results = asyncio.run(pool.validate_all(Provider.GROQ))

    assert [results[i] for i in ids] == [INVALID, VALID, RATE_LIMITED]
    assert [c.id for c in pool.credentials(Provider.GROQ)] == ids
    assert sorted(pool.probe.calls) == ["k1", "k2", "k3"]


def test_status_counts(pool):
    pool.add(Provider.OPENAI, "k1", status=VALID)
    pool.add(Provider.OPENAI, "k2", status=VALID)
    pool.add(Provider.OPENAI, "k3", status=EXHAUSTED)

    counts = pool.status_counts(Provider.OPENAI)

    assert counts[VALID] == 2
    assert counts[EXHAUSTED] == 1
    assert counts[INVALID] == 0


def test_concurrent_outcomes_are_not_lost(pool):
    creds = [pool.add(Provider.OPENAI, f"key-{i}", status=VALID) for i in range(50)]

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(lambda c: pool.record_outcome(Provider.OPENAI, c.id, 429), creds))

    assert all(c.status is RATE_LIMITED for c in pool.credentials(Provider.OPENAI))
    assert pool.eligible(Provider.OPENAI) == []


def test_from_settings_loads_keys_as_testing():
    class Settings:
        provider_keys = {"OpenAI": ("a", "b"), "Groq": ("c",)}

    manager = CredentialPoolManager.from_settings(Settings())

    assert [c.secret for c in manager.credentials(Provider.OPENAI)] == ["a", "b"]
    assert all(c.status is TESTING for c in manager.credentials(Provider.GROQ))


def test_masked_secret_never_exposes_key(pool):
    cred = pool.add(Provider.OPENAI, "sk-verysecretvalue1234")

    assert cred.masked == "****1234"
    assert "verysecret" not in repr(cred)


def test_record_outcome_ignores_removed_credential(pool, events):
    cred = pool.add(Provider.OPENAI, "k1", status=VALID)
    pool.remove(Provider.OPENAI, cred.id)

    assert pool.record_outcome(Provider.OPENAI, cred.id, 429) is None
    assert pool.record_outcome(Provider.OPENAI, cred.id, 200) is None
    assert not any(isinstance(e, CredentialStatusChanged) for e in events)
