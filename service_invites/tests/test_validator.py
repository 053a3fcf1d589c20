"""
Unit tests for the read-only invite preview.
"""

import json

import pytest

from shared.errors import ValidationError
from service_invites.app.tokens.validator import INVALID_RESPONSE
from .conftest import OWNER_ID, PROPERTY_ID, fetch_token


class TestTokenValidator:
    """Test cases for TokenValidator."""

    @pytest.mark.asyncio
    async def test_valid_token_preview(self, issuer, validator):
        """A live token previews its property and issuer."""
        issued = await issuer.issue(PROPERTY_ID, OWNER_ID)

        outcome = await validator.validate(issued.token)

        assert outcome.valid is True
        assert outcome.to_response() == {
            "valid": True,
            "property_preview": {
                "name": "Maple Court",
                "address": "12 Maple Street",
                "issuer_name": "Olivia Owner",
            },
        }

    @pytest.mark.asyncio
    async def test_validate_has_no_side_effects(self, issuer, validator, database):
        """Previewing does not consume a use."""
        issued = await issuer.issue(PROPERTY_ID, OWNER_ID)

        for _ in range(3):
            await validator.validate(issued.token)

        row = await fetch_token(database, issued.token_id)
        assert row.use_count == 0
        assert row.last_used_at is None

    @pytest.mark.asyncio
    async def test_wrong_verifier_is_invalid(self, issuer, validator):
        """A known selector with the wrong verifier is rejected."""
        issued = await issuer.issue(PROPERTY_ID, OWNER_ID)
        selector = issued.token.split(".")[0]

        outcome = await validator.validate(f"{selector}.{'A' * 22}")

        assert outcome.valid is False
        assert outcome.to_response() == INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_malformed_token(self, validator):
        """Garbage input is a validation error, not a lookup."""
        with pytest.raises(ValidationError):
            await validator.validate("definitely not a token")

    @pytest.mark.asyncio
    async def test_failures_are_indistinguishable(self, issuer, validator, acceptor, revoker, hasher, clock):
        """Nonexistent, expired, revoked and exhausted tokens produce byte-identical payloads."""
        expired = await issuer.issue(PROPERTY_ID, OWNER_ID, ttl_days=1)
        clock.advance(days=1, seconds=301)
        revoked = await issuer.issue(PROPERTY_ID, OWNER_ID)
        exhausted = await issuer.issue(PROPERTY_ID, OWNER_ID, max_uses=1)
        await revoker.revoke(revoked.token_id, OWNER_ID)
        assert (await acceptor.accept(exhausted.token, "tenant-a")).success
        nonexistent = hasher.generate().plaintext

        outcomes = {
            "nonexistent": await validator.validate(nonexistent),
            "expired": await validator.validate(expired.token),
            "revoked": await validator.validate(revoked.token),
            "exhausted": await validator.validate(exhausted.token),
        }

        payloads = {json.dumps(o.to_response(), separators=(",", ":")) for o in outcomes.values()}
        assert payloads == {'{"valid":false,"error":"invalid"}'}
        # The reason is still available internally for metrics.
        assert outcomes["expired"].reason == "expired"
        assert outcomes["revoked"].reason == "revoked"
        assert outcomes["exhausted"].reason == "exhausted"
        assert outcomes["nonexistent"].reason == "not_found"

    @pytest.mark.asyncio
    async def test_grace_window_applies(self, issuer, validator, clock):
        """Tokens stay previewable inside the clock-skew grace window."""
        issued = await issuer.issue(PROPERTY_ID, OWNER_ID, ttl_days=1)

        clock.advance(days=1, seconds=299)
        assert (await validator.validate(issued.token)).valid is True

        clock.advance(seconds=2)
        assert (await validator.validate(issued.token)).valid is False
