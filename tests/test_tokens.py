"""Unit tests for auth/tokens.py -- TokenService and password helpers.

Covers:
- round trip: validate(create(c)) == c
- exact wire form: constant header, compact claims JSON in fixed key order
- tamper detection on every character of every segment
- expiry boundary (exp == now valid, exp < now expired)
- malformed structure and malformed payloads
- the user-42 login scenario on a fake clock
- interoperability with python-jose in both directions
- bcrypt hashing and timing-equalized authenticate_user()
"""

import json

import pytest
from jose import jwt

from auth import codec
from auth.errors import (
    InvalidSignatureError,
    InvalidTokenError,
    MalformedEncodingError,
    MalformedPayloadError,
    TokenExpiredError,
)
from auth.models import TOKEN_LIFETIME_SECONDS, Claims, User
from auth.tokens import TOKEN_HEADER, TokenService, authenticate_user, hash_password, verify_password

SECRET = "unit-test-secret-with-at-least-32-chars"
NOW = 1_700_000_000


@pytest.fixture
def tokens(clock):
    clock.now = NOW
    return TokenService(SECRET, clock=clock)


def _claims(**overrides) -> Claims:
    fields = dict(user_id=7, email="reader@example.com", username="reader", issued_at=NOW, expires_at=NOW + 3600)
    fields.update(overrides)
    return Claims(**fields)


def _other_char(ch: str) -> str:
    return "A" if ch != "A" else "B"


def _forge(tokens: TokenService, payload: bytes) -> str:
    """Sign an arbitrary payload with the service's own key."""
    body = codec.encode(payload)
    return f"{TOKEN_HEADER}.{body}.{tokens._sign(f'{TOKEN_HEADER}.{body}')}"


# ---------------------------------------------------------------------------
# Round trip and wire form
# ---------------------------------------------------------------------------


class TestCreate:
    def test_round_trip(self, tokens):
        claims = _claims()
        assert tokens.validate(tokens.create(claims)) == claims

    def test_round_trip_without_username(self, tokens):
        claims = _claims(username=None)
        assert tokens.validate(tokens.create(claims)) == claims

    def test_round_trip_non_ascii_email(self, tokens):
        claims = _claims(email="léa@bibliothèque.fr", username="Léa")
        assert tokens.validate(tokens.create(claims)) == claims

    def test_header_is_constant(self, tokens):
        token = tokens.create(_claims())
        assert token.split(".")[0] == TOKEN_HEADER
        assert json.loads(codec.decode(TOKEN_HEADER)) == {"alg": "HS256", "typ": "JWT"}

    def test_payload_is_compact_json_in_fixed_order(self, tokens):
        token = tokens.create(_claims())
        payload = codec.decode(token.split(".")[1]).decode("utf-8")
        assert payload == (
            f'{{"user_id":7,"email":"reader@example.com","username":"reader","exp":{NOW + 3600},"iat":{NOW}}}'
        )

    def test_no_padding_in_any_segment(self, tokens):
        token = tokens.create(_claims(email="x@y.z"))
        assert "=" not in token
        assert token.count(".") == 2

    def test_different_secrets_give_different_signatures(self, tokens, clock):
        other = TokenService("another-secret-that-is-32-chars-long!", clock=clock)
        claims = _claims()
        assert tokens.create(claims).split(".")[2] != other.create(claims).split(".")[2]

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenService("")


# ---------------------------------------------------------------------------
# Validation failures
# ---------------------------------------------------------------------------


class TestValidate:
    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "a..c", ".b.c", "a.b."])
    def test_wrong_segment_count_or_empty_segment(self, tokens, token):
        with pytest.raises(InvalidTokenError):
            tokens.validate(token)

    def test_tampered_payload(self, tokens):
        header, payload, signature = tokens.create(_claims()).split(".")
        forged = codec.encode(codec.decode(payload).replace(b'"user_id":7', b'"user_id":1'))
        with pytest.raises(InvalidSignatureError):
            tokens.validate(f"{header}.{forged}.{signature}")

    # 32-byte HMAC-SHA256 digest -> 43 base64url characters; the last one
    # carries only 4 significant bits.
    @pytest.mark.parametrize("index", range(43))
    def test_tampered_signature_character(self, tokens, index):
        header, payload, signature = tokens.create(_claims()).split(".")
        assert len(signature) == 43
        flipped = signature[:index] + _other_char(signature[index]) + signature[index + 1 :]
        with pytest.raises(InvalidSignatureError):
            tokens.validate(f"{header}.{payload}.{flipped}")

    @pytest.mark.parametrize("segment", [0, 1])
    def test_tampered_header_or_payload_character(self, tokens, segment):
        parts = tokens.create(_claims()).split(".")
        original = parts[segment]
        for index in range(len(original)):
            parts[segment] = original[:index] + _other_char(original[index]) + original[index + 1 :]
            with pytest.raises(InvalidSignatureError):
                tokens.validate(".".join(parts))

    def test_tampered_header(self, tokens):
        _, payload, signature = tokens.create(_claims()).split(".")
        none_header = codec.encode(b'{"alg":"none","typ":"JWT"}')
        with pytest.raises(InvalidSignatureError):
            tokens.validate(f"{none_header}.{payload}.{signature}")

    def test_signature_from_other_secret(self, tokens, clock):
        other = TokenService("another-secret-that-is-32-chars-long!", clock=clock)
        with pytest.raises(InvalidSignatureError):
            tokens.validate(other.create(_claims()))

    def test_signature_checked_before_payload(self, tokens):
        """An unsigned garbage payload is a signature failure, not a parse failure."""
        with pytest.raises(InvalidSignatureError):
            tokens.validate(f"{TOKEN_HEADER}.bm90LWpzb24.c2ln")

    def test_expired(self, tokens, clock):
        token = tokens.create(_claims(expires_at=NOW - 1))
        with pytest.raises(TokenExpiredError) as exc_info:
            tokens.validate(token)
        assert exc_info.value.details == {"expires_at": NOW - 1}

    def test_expiry_boundary_is_inclusive(self, tokens):
        claims = _claims(expires_at=NOW)
        assert tokens.validate(tokens.create(claims)) == claims

    def test_signed_payload_with_bad_encoding(self, tokens):
        token = f"{TOKEN_HEADER}.Zh.{tokens._sign(f'{TOKEN_HEADER}.Zh')}"
        with pytest.raises(MalformedEncodingError):
            tokens.validate(token)

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"[1,2,3]",
            b'{"email":"a@b.c","exp":1,"iat":1}',
            b'{"user_id":"7","email":"a@b.c","exp":1800000000,"iat":1}',
            b'{"user_id":7,"email":"a@b.c","exp":1800000000.5,"iat":1}',
            b'{"user_id":7,"email":null,"exp":1800000000,"iat":1}',
            b'{"user_id":7,"email":"a@b.c","username":5,"exp":1800000000,"iat":1}',
            b'{"user_id":true,"email":"a@b.c","exp":1800000000,"iat":1}',
        ],
    )
    def test_malformed_payload(self, tokens, payload):
        with pytest.raises(MalformedPayloadError):
            tokens.validate(_forge(tokens, payload))

    def test_absent_username_and_extra_claims_accepted(self, tokens):
        payload = f'{{"user_id":7,"email":"a@b.c","exp":{NOW + 60},"iat":{NOW},"sub":"7"}}'.encode()
        claims = tokens.validate(_forge(tokens, payload))
        assert claims.username is None
        assert claims.user_id == 7


# ---------------------------------------------------------------------------
# Issue and the login scenario
# ---------------------------------------------------------------------------


class TestIssue:
    def test_issue_stamps_lifetime_from_clock(self, tokens):
        token, claims = tokens.issue(42, "a@b.c", "alice")
        assert claims.issued_at == NOW
        assert claims.expires_at == NOW + TOKEN_LIFETIME_SECONDS
        assert tokens.validate(token) == claims

    def test_user_42_scenario(self, tokens, clock):
        """Token issued at T is valid at T+1s and expired at T+24h+1s."""
        token, _ = tokens.issue(42, "a@b.c", "alice")

        clock.advance(1)
        claims = tokens.validate(token)
        assert (claims.user_id, claims.email, claims.username) == (42, "a@b.c", "alice")
        assert claims.expires_at - claims.issued_at == 86400

        clock.advance(TOKEN_LIFETIME_SECONDS)
        with pytest.raises(TokenExpiredError):
            tokens.validate(token)


# ---------------------------------------------------------------------------
# python-jose interoperability
# ---------------------------------------------------------------------------


class TestJoseInterop:
    def test_jose_decodes_our_token(self):
        service = TokenService(SECRET)
        token, claims = service.issue(42, "a@b.c", "alice")
        decoded = jwt.decode(token, SECRET, algorithms=["HS256"])
        assert decoded == {
            "user_id": 42,
            "email": "a@b.c",
            "username": "alice",
            "exp": claims.expires_at,
            "iat": claims.issued_at,
        }

    def test_we_validate_jose_token(self, tokens):
        encoded = jwt.encode(
            {"user_id": 9, "email": "j@o.se", "username": None, "exp": NOW + 60, "iat": NOW},
            SECRET,
            algorithm="HS256",
        )
        assert tokens.validate(encoded) == Claims(9, "j@o.se", None, NOW, NOW + 60)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong", hashed)

    def test_verify_garbage_hash_is_false(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_authenticate_user(self, user_store, make_user):
        uid = make_user("a@b.c", password="pw-123456")
        user = authenticate_user(user_store, "a@b.c", "pw-123456")
        assert isinstance(user, User)
        assert user.id == uid
        assert authenticate_user(user_store, "a@b.c", "nope") is None
        assert authenticate_user(user_store, "missing@b.c", "pw-123456") is None

    def test_authenticate_inactive_user(self, user_store, make_user):
        make_user("off@b.c", password="pw-123456", is_active=False)
        assert authenticate_user(user_store, "off@b.c", "pw-123456") is None
