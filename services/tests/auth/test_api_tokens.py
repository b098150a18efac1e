"""Tests for API tokens — generation, hashing, validation, config-driven expiry."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from opphub.auth.api_tokens import (
    _generate_raw_token,
    _generate_token_id,
    create_api_token,
    hash_token,
    validate_api_token,
)


class TestTokenGeneration:
    def test_token_id_format(self):
        assert _generate_token_id().startswith("at-")

    def test_raw_token_format(self):
        raw = _generate_raw_token()
        random_id, _, secret = raw.partition(".opph.")
        assert len(random_id) > 5
        assert len(secret) > 20

    def test_hash_is_hex_sha256(self):
        h = hash_token("test")
        assert len(h) == 64
        assert h == hash_token("test")
        assert h != hash_token("other")


class TestCreateAPIToken:
    async def test_create_returns_model_and_raw_token(self):
        mock_db = AsyncMock(spec=AsyncSession)

        api_token, raw_token = await create_api_token(
            mock_db, user_email="test@example.com", description="bootstrap"
        )

        assert api_token.user_email == "test@example.com"
        assert api_token.description == "bootstrap"
        assert api_token.token_hash == hash_token(raw_token)
        mock_db.add.assert_called_once_with(api_token)
        mock_db.flush.assert_called_once()


class TestValidateAPIToken:
    @pytest.fixture
    def mock_db(self):
        return AsyncMock(spec=AsyncSession)

    def _returning(self, mock_db, token):
        result = MagicMock()
        result.scalar_one_or_none.return_value = token
        mock_db.execute.return_value = result

    @patch("opphub.auth.api_tokens.settings")
    async def test_valid_token_updates_last_used(self, mock_settings, mock_db):
        mock_settings.auth.api_token_max_ttl_hours = 0
        token = MagicMock()
        token.last_used_at = None
        token.created_at = datetime.now(UTC)
        self._returning(mock_db, token)

        assert await validate_api_token(mock_db, "abc.opph.secret") is token
        assert mock_db.execute.call_count == 2  # select + update

    @patch("opphub.auth.api_tokens.settings")
    async def test_recently_used_token_skips_update(self, mock_settings, mock_db):
        mock_settings.auth.api_token_max_ttl_hours = 0
        token = MagicMock()
        token.last_used_at = datetime.now(UTC)
        token.created_at = datetime.now(UTC)
        self._returning(mock_db, token)

        assert await validate_api_token(mock_db, "abc.opph.secret") is token
        assert mock_db.execute.call_count == 1

    async def test_unknown_token(self, mock_db):
        self._returning(mock_db, None)
        assert await validate_api_token(mock_db, "nope.opph.nope") is None

    @patch("opphub.auth.api_tokens.settings")
    async def test_expired_token_rejected(self, mock_settings, mock_db):
        mock_settings.auth.api_token_max_ttl_hours = 1
        token = MagicMock()
        token.created_at = datetime.now(UTC) - timedelta(hours=2)
        self._returning(mock_db, token)

        assert await validate_api_token(mock_db, "old.opph.token") is None
