# tests/test_credentials.py
import pytest

from authgate.oauth.credentials import BcryptCredentialVerifier


def test_hash_verifies_and_rejects_wrong_secret(credential_verifier):
    digest = credential_verifier.hash("s3cret")

    assert digest != "s3cret"
    assert credential_verifier.verify("s3cret", digest) is True
    assert credential_verifier.verify("S3cret", digest) is False


def test_hashes_are_salted(credential_verifier):
    assert credential_verifier.hash("same") != credential_verifier.hash("same")


@pytest.mark.parametrize("digest", ["", "not-a-bcrypt-hash", "$2b$04$short"])
def test_malformed_digest_is_a_plain_mismatch(credential_verifier, digest):
    assert credential_verifier.verify("anything", digest) is False


def test_secret_is_truncated_at_bcrypt_input_limit(credential_verifier):
    prefix = "x" * 72
    digest = credential_verifier.hash(prefix + "tail-one")

    assert credential_verifier.verify(prefix + "tail-two", digest) is True


def test_rounds_are_encoded_in_digest():
    verifier = BcryptCredentialVerifier(rounds=5)
    assert verifier.hash("pw").startswith("$2b$05$")


def test_dummy_digest_does_not_match_empty_or_common_secrets(credential_verifier):
    for candidate in ("", "password", "admin"):
        assert credential_verifier.verify(candidate, credential_verifier.dummy_digest) is False


@pytest.mark.asyncio
async def test_verify_async_matches_verify(credential_verifier):
    digest = credential_verifier.hash("pw")

    assert await credential_verifier.verify_async("pw", digest) is True
    assert await credential_verifier.verify_async("nope", digest) is False
