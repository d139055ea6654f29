"""Tests for local storage and signed URL tokens."""

import pytest
from jose import jwt

from relaykit.infra.storage import InvalidSignedTokenError, LocalStorageProvider


async def test_write_read_delete(storage):
    await storage.write("job-1/photo.jpg", b"bytes")
    assert await storage.exists("job-1/photo.jpg")
    assert await storage.read("job-1/photo.jpg") == b"bytes"

    await storage.delete("job-1/photo.jpg")
    assert not await storage.exists("job-1/photo.jpg")
    await storage.delete("job-1/photo.jpg")


async def test_keys_cannot_escape_base_dir(storage, tmp_path):
    await storage.write("../../escape.txt", b"x")
    assert not (tmp_path / "escape.txt").exists()
    assert await storage.read("escape.txt") == b"x"


def test_signed_urls_route_by_operation(storage):
    read_url = storage.create_signed_url("job-1/a.jpg", 60)
    write_url = storage.create_signed_url("job-1/a.jpg", 60, op="write")
    assert read_url.startswith("http://test/files/")
    assert write_url.startswith("http://test/api/uploads/")


def test_verify_returns_key(storage):
    token = storage.sign("job-1/a.jpg", 60)
    assert storage.verify(token) == "job-1/a.jpg"


def test_verify_rejects_wrong_operation(storage):
    token = storage.sign("job-1/a.jpg", 60, op="read")
    with pytest.raises(InvalidSignedTokenError, match="operation"):
        storage.verify(token, op="write")


def test_token_is_hs256_jwt(storage):
    token = storage.sign("job-1/a.jpg", 60, op="write")
    assert jwt.get_unverified_header(token)["alg"] == "HS256"
    claims = jwt.get_unverified_claims(token)
    assert claims["k"] == "job-1/a.jpg"
    assert claims["op"] == "write"
    assert isinstance(claims["exp"], int)


def test_verify_rejects_tampering(storage):
    token = storage.sign("job-1/a.jpg", 60)
    header, _, sig = token.split(".")
    forged = jwt.encode({"k": "job-2/b.jpg", "op": "read", "exp": 9999999999}, "guess", algorithm="HS256")
    with pytest.raises(InvalidSignedTokenError, match="signature"):
        storage.verify(f"{header}.{forged.split('.')[1]}.{sig}")
    with pytest.raises(InvalidSignedTokenError):
        storage.verify("no-dot-here")


def test_verify_rejects_other_secret(storage, tmp_path):
    other = LocalStorageProvider(str(tmp_path / "other"), secret="another", public_base_url="http://test")
    with pytest.raises(InvalidSignedTokenError, match="signature"):
        other.verify(storage.sign("job-1/a.jpg", 60))


def test_verify_rejects_expired(storage):
    token = storage.sign("job-1/a.jpg", -60)
    with pytest.raises(InvalidSignedTokenError, match="expired"):
        storage.verify(token)
