"""
Tests for staff access token creation and verification.
"""

from datetime import timedelta

import pytest
from jose import jwt

from storefront.core.config import get_settings
from storefront.core.security import (
    TokenError,
    create_access_token,
    decode_token,
)


# ============================================================================
# Unit Tests - Staff Tokens
# ============================================================================


class TestStaffTokens:
    """Tests for create_access_token and decode_token."""

    def test_round_trip_claims(self):
        """Test that a minted token decodes to its claims."""
        token = create_access_token("staff-7", "store_owner", store_id="store-1")

        payload = decode_token(token)

        assert payload["sub"] == "staff-7"
        assert payload["role"] == "store_owner"
        assert payload["store_id"] == "store-1"
        assert payload["type"] == "access"

    def test_admin_token_has_no_store(self):
        """Test that platform admin tokens carry no store scope."""
        assert "store_id" not in decode_token(create_access_token("root", "admin"))

    def test_expired_token(self):
        """Test that an expired token is rejected."""
        token = create_access_token("staff-7", "admin", expires_delta=timedelta(seconds=-5))

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_EXPIRED"

    def test_wrong_signature(self):
        """Test that a token signed with another key is rejected."""
        token = jwt.encode({"sub": "x", "role": "admin", "type": "access"}, "y" * 40, algorithm="HS256")

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_INVALID"

    def test_non_access_token(self):
        """Test that refresh or other token types are rejected."""
        settings = get_settings()
        token = jwt.encode(
            {"sub": "x", "role": "admin", "type": "refresh"},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )

        with pytest.raises(TokenError) as exc_info:
            decode_token(token)

        assert exc_info.value.code == "TOKEN_TYPE_INVALID"

    def test_empty_token(self):
        """Test that an empty token is rejected before decoding."""
        with pytest.raises(TokenError) as exc_info:
            decode_token("")

        assert exc_info.value.code == "EMPTY_TOKEN"
