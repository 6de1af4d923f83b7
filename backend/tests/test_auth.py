"""
Unit tests for authentication middleware.
Tests JWT verification, user extraction, and branch access checks.
"""

import pytest
import os
import time
import jwt as pyjwt
from fastapi import HTTPException
from unittest.mock import MagicMock, Mock, patch

# Mock environment variables before importing app modules
os.environ['SUPABASE_URL'] = 'https://test.supabase.co'
os.environ['SUPABASE_KEY'] = 'test-anon-key'

from app.auth import get_current_user, verify_branch_access, _verify_jwt_locally


def _table(data):
    """A table mock whose select/eq/limit chain ends in execute() -> data."""
    table = MagicMock()
    table.select.return_value = table
    table.eq.return_value = table
    table.limit.return_value = table
    table.execute.return_value = Mock(data=data)
    return table


def _admin_with(branches=None, branch_members=None, brand_members=None):
    tables = {
        "branches": _table(branches or []),
        "branch_members": _table(branch_members or []),
        "brand_members": _table(brand_members or []),
    }
    admin = MagicMock()
    admin.table.side_effect = lambda name: tables[name]
    return admin, tables


BRANCH = {
    "id": "branch-1",
    "name": "Gangnam",
    "brand_id": "brand-1",
    "brands": {"id": "brand-1", "owner_user_id": "owner-1"},
}


class TestGetCurrentUser:
    """Test JWT token verification and user extraction."""

    @pytest.mark.asyncio
    async def test_valid_token_returns_user_id(self):
        """Valid JWT token should return authenticated user_id."""
        mock_token = "valid.jwt.token"

        with patch('app.auth.SUPABASE_JWT_SECRET', None), patch('app.auth.supabase') as mock_supabase:
            mock_supabase.auth.get_user.return_value = Mock(user=Mock(id="user-123"))

            user_id = await get_current_user(f"Bearer {mock_token}")

            assert user_id == "user-123"
            mock_supabase.auth.get_user.assert_called_once_with(mock_token)

    @pytest.mark.asyncio
    async def test_missing_token_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.status_code == 401
        assert "Not authenticated" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_missing_bearer_prefix_raises_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("invalid.jwt.token")

        assert exc_info.value.status_code == 401
        assert "Invalid authentication" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_invalid_token_raises_401(self):
        with patch('app.auth.SUPABASE_JWT_SECRET', None), patch('app.auth.supabase') as mock_supabase:
            mock_supabase.auth.get_user.side_effect = Exception("Invalid token")

            with pytest.raises(HTTPException) as exc_info:
                await get_current_user("Bearer invalid.jwt.token")

            assert exc_info.value.status_code == 401
            assert "Invalid token" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_expired_token_raises_401(self):
        with patch('app.auth.SUPABASE_JWT_SECRET', None), patch('app.auth.supabase') as mock_supabase:
            mock_supabase.auth.get_user.side_effect = Exception("Token expired")

            with pytest.raises(HTTPException) as exc_info:
                await get_current_user("Bearer expired.jwt.token")

            assert exc_info.value.status_code == 401
            assert "expired" in str(exc_info.value.detail).lower()

    @pytest.mark.asyncio
    async def test_no_user_in_response_raises_401(self):
        with patch('app.auth.SUPABASE_JWT_SECRET', None), patch('app.auth.supabase') as mock_supabase:
            mock_supabase.auth.get_user.return_value = Mock(user=None)

            with pytest.raises(HTTPException) as exc_info:
                await get_current_user("Bearer valid.jwt.token")

            assert exc_info.value.status_code == 401
            assert "Invalid token" in str(exc_info.value.detail)


class TestVerifyBranchAccess:
    """Test branch access checks for owners and members."""

    @pytest.mark.asyncio
    async def test_brand_owner_has_access(self):
        admin, tables = _admin_with(branches=[BRANCH])

        with patch('app.auth.supabase_admin', admin):
            branch = await verify_branch_access("branch-1", "owner-1")

        assert branch["id"] == "branch-1"
        tables["branch_members"].execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_branch_member_has_access(self):
        admin, _ = _admin_with(branches=[BRANCH], branch_members=[{"role": "staff"}])

        with patch('app.auth.supabase_admin', admin):
            branch = await verify_branch_access("branch-1", "staff-1")

        assert branch["name"] == "Gangnam"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", ["owner", "admin"])
    async def test_brand_admin_member_has_access(self, role):
        admin, _ = _admin_with(branches=[BRANCH], brand_members=[{"role": role}])

        with patch('app.auth.supabase_admin', admin):
            branch = await verify_branch_access("branch-1", "manager-1")

        assert branch["id"] == "branch-1"

    @pytest.mark.asyncio
    async def test_brand_viewer_is_rejected(self):
        admin, _ = _admin_with(branches=[BRANCH], brand_members=[{"role": "viewer"}])

        with patch('app.auth.supabase_admin', admin):
            with pytest.raises(HTTPException) as exc_info:
                await verify_branch_access("branch-1", "viewer-1")

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_stranger_is_rejected(self):
        admin, _ = _admin_with(branches=[BRANCH])

        with patch('app.auth.supabase_admin', admin):
            with pytest.raises(HTTPException) as exc_info:
                await verify_branch_access("branch-1", "stranger")

        assert exc_info.value.status_code == 403
        assert "not authorized" in str(exc_info.value.detail).lower()

    @pytest.mark.asyncio
    async def test_branch_not_found_raises_404(self):
        admin, _ = _admin_with(branches=[])

        with patch('app.auth.supabase_admin', admin):
            with pytest.raises(HTTPException) as exc_info:
                await verify_branch_access("missing", "owner-1")

        assert exc_info.value.status_code == 404
        assert "Branch not found" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_brand_embedded_as_list(self):
        branch = dict(BRANCH, brands=[{"id": "brand-1", "owner_user_id": "owner-1"}])
        admin, _ = _admin_with(branches=[branch])

        with patch('app.auth.supabase_admin', admin):
            result = await verify_branch_access("branch-1", "owner-1")

        assert result["id"] == "branch-1"

    @pytest.mark.asyncio
    async def test_database_error_raises_500(self):
        admin = MagicMock()
        admin.table.side_effect = Exception("Database error")

        with patch('app.auth.supabase_admin', admin):
            with pytest.raises(HTTPException) as exc_info:
                await verify_branch_access("branch-1", "owner-1")

        assert exc_info.value.status_code == 500
        assert "Failed to verify branch access" in str(exc_info.value.detail)


class TestVerifyJwtLocally:
    """
    Local HS256 verification, using real tokens signed inline with PyJWT.
    """

    TEST_SECRET = "test-jwt-secret-for-unit-tests"

    def _make_token(self, payload: dict) -> str:
        return pyjwt.encode(payload, self.TEST_SECRET, algorithm="HS256")

    def test_valid_token_returns_user_id(self):
        token = self._make_token({"sub": "user-abc", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            user_id = _verify_jwt_locally(token)

        assert user_id == "user-abc"

    def test_authenticated_audience_is_accepted(self):
        token = self._make_token({"sub": "user-abc", "aud": "authenticated", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            assert _verify_jwt_locally(token) == "user-abc"

    def test_expired_token_raises_401(self):
        token = self._make_token({"sub": "user-abc", "exp": int(time.time()) - 10})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            with pytest.raises(HTTPException) as exc_info:
                _verify_jwt_locally(token)

        assert exc_info.value.status_code == 401
        assert "expired" in str(exc_info.value.detail).lower()

    def test_invalid_signature_raises_401(self):
        token = self._make_token({"sub": "user-abc", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", "wrong-secret"):
            with pytest.raises(HTTPException) as exc_info:
                _verify_jwt_locally(token)

        assert exc_info.value.status_code == 401
        assert "Invalid token" in str(exc_info.value.detail)

    def test_missing_sub_claim_raises_401(self):
        token = self._make_token({"role": "authenticated", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET):
            with pytest.raises(HTTPException) as exc_info:
                _verify_jwt_locally(token)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_local_path_used_when_secret_set(self):
        token = self._make_token({"sub": "user-xyz", "exp": int(time.time()) + 3600})

        with patch("app.auth.SUPABASE_JWT_SECRET", self.TEST_SECRET), patch("app.auth.supabase") as mock_supabase:
            user_id = await get_current_user(f"Bearer {token}")

        assert user_id == "user-xyz"
        mock_supabase.auth.get_user.assert_not_called()
