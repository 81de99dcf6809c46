# tests/test_cli.py
import json
from datetime import timedelta

from typer.testing import CliRunner

from authgate.cli.main_cli import app
from authgate.oauth.credentials import BcryptCredentialVerifier
from authgate.oauth.token_codec import TokenCodec

from .conftest import TEST_JWT_SECRET

runner = CliRunner()


def test_generate_signing_secret_is_random():
    first = runner.invoke(app, ["generate-signing-secret"])
    second = runner.invoke(app, ["generate-signing-secret", "--bytes", "64"])

    assert first.exit_code == 0
    assert second.exit_code == 0
    assert len(first.stdout.strip()) >= 64
    assert first.stdout.strip() != second.stdout.strip()


def test_generate_signing_secret_refuses_short_secrets():
    result = runner.invoke(app, ["generate-signing-secret", "--bytes", "8"])
    assert result.exit_code != 0


def test_hash_secret_output_verifies():
    result = runner.invoke(app, ["hash-secret", "--secret", "s3cret", "--rounds", "4"])

    assert result.exit_code == 0
    digest = result.stdout.strip()
    assert digest.startswith("$2b$04$")
    assert BcryptCredentialVerifier(rounds=4).verify("s3cret", digest)


def test_decode_token_prints_claims():
    token = TokenCodec(TEST_JWT_SECRET).sign(
        {"sub": "user-1", "client_id": "c1", "scope": "read", "type": "access"}, timedelta(minutes=5)
    )

    result = runner.invoke(app, ["decode-token", token, "--jwt-secret", TEST_JWT_SECRET])

    assert result.exit_code == 0
    claims = json.loads(result.stdout)
    assert claims["sub"] == "user-1"
    assert claims["client_id"] == "c1"


def test_decode_token_rejects_foreign_signature():
    token = TokenCodec("some-other-signing-secret-entirely-000000").sign({"sub": "x"}, timedelta(minutes=5))

    result = runner.invoke(app, ["decode-token", token, "--jwt-secret", TEST_JWT_SECRET])

    assert result.exit_code == 1


def test_decode_token_needs_a_secret():
    result = runner.invoke(app, ["decode-token", "a.b.c"], env={"JWT_SECRET": ""})

    assert result.exit_code == 1
