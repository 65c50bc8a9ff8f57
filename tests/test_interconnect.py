import base64

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from media_queue.auth.interconnect import InterconnectTrust, _private_op, generate_keypair
from media_queue.errors import AppError, ErrorKind


def test_issued_token_verifies(trust):
    """test a token round trips through the matching key pair"""
    token = trust.issue()
    recovered = trust.verify(token)
    assert recovered.version == 7


def test_tokens_are_unique_and_time_ordered(trust):
    """test consecutive tokens carry increasing uuids"""
    first = trust.verify(trust.issue())
    second = trust.verify(trust.issue())
    assert first != second
    assert first.bytes[:6] <= second.bytes[:6]


def test_token_length_matches_key_size(trust):
    """test the signed block is exactly one modulus long"""
    raw = base64.b64decode(trust.issue())
    assert len(raw) == 2048 // 8


def test_crt_signing_matches_plain_exponentiation():
    """test the blinded crt operation agrees with m^d mod n"""
    numbers = rsa.generate_private_key(public_exponent=65537, key_size=2048).private_numbers()
    n = numbers.public_numbers.n
    for message in (0, 1, 2, 0x0001FFFF00DEADBEEF, n - 1):
        assert _private_op(numbers, message) == pow(message, numbers.d, n)


def test_unrelated_key_rejects_token(trust):
    """test verification with someone else's public key fails"""
    other_public, other_private = generate_keypair(2048)
    stranger = InterconnectTrust.from_pem(other_private, other_public)

    with pytest.raises(AppError) as exc_info:
        stranger.verify(trust.issue())
    assert exc_info.value.kind is ErrorKind.UNAUTHORIZED


def test_corrupted_base64_rejected(trust):
    """test garbage tokens are unauthorized"""
    with pytest.raises(AppError) as exc_info:
        trust.verify("this is not base64!!")
    assert exc_info.value.kind is ErrorKind.UNAUTHORIZED
    assert exc_info.value.message == "Malformed token"


def test_tampered_token_rejected(trust):
    """test flipping a byte of a valid token breaks it"""
    raw = bytearray(base64.b64decode(trust.issue()))
    raw[10] ^= 0xFF
    with pytest.raises(AppError) as exc_info:
        trust.verify(base64.b64encode(bytes(raw)).decode())
    assert exc_info.value.kind is ErrorKind.UNAUTHORIZED


def test_verify_only_side_cannot_issue(keypair):
    """test a trust without a private key refuses to issue"""
    public_pem, _ = keypair
    verifier = InterconnectTrust.from_pem(None, public_pem)
    with pytest.raises(AppError) as exc_info:
        verifier.issue()
    assert exc_info.value.kind is ErrorKind.SERVER


def test_bad_pem_is_server_error():
    """test unreadable keys fail at load time"""
    with pytest.raises(AppError) as exc_info:
        InterconnectTrust.from_pem(b"-----BEGIN nothing-----", None)
    assert exc_info.value.kind is ErrorKind.SERVER


def test_peer_uris(trust):
    """test endpoint helpers concatenate base url and path"""
    assert trust.backend_uri("/v1/media/queue/complete") == "http://origin.test/v1/media/queue/complete"
    assert trust.mq_uri("/v1/queue") == "http://mq.test/v1/queue"
