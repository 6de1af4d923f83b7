"""
Authentication and branch access checks.

- get_current_user verifies the Supabase JWT: locally with python-jose when
  SUPABASE_JWT_SECRET is set, otherwise through the Supabase Auth API.
- verify_branch_access confirms the user may act on a branch (brand owner,
  brand owner/admin member, or branch member) and returns the branch row.
"""

import logging
import os
from fastapi import HTTPException, Header
from typing import Optional
from app.db import supabase, supabase_admin

logger = logging.getLogger(__name__)

SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None

_BRAND_ADMIN_ROLES = {"owner", "admin"}


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    Extract and verify the JWT from the Authorization header.

    Returns:
        The authenticated user's ID (the JWT ``sub`` claim).

    Raises:
        HTTPException: 401 if the token is missing, malformed, invalid, or expired.
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    token = parts[1]

    if SUPABASE_JWT_SECRET:
        return _verify_jwt_locally(token)
    return await _verify_jwt_remotely(token)


def _verify_jwt_locally(token: str) -> str:
    """Verify an HS256 Supabase JWT with the project secret and return ``sub``."""
    from jose import jwt, JWTError, ExpiredSignatureError

    try:
        payload = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},  # Supabase uses the 'authenticated' role, not a fixed audience
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    return user_id


async def _verify_jwt_remotely(token: str) -> str:
    """Verify a JWT via the Supabase Auth API (no JWT secret configured)."""
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        if "expired" in str(e).lower():
            raise HTTPException(status_code=401, detail="Token expired")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not response or not response.user:
        raise HTTPException(status_code=401, detail="Invalid token")

    return response.user.id


def _single(result) -> Optional[dict]:
    return result.data[0] if result.data else None


async def verify_branch_access(branch_id: str, user_id: str) -> dict:
    """
    Verify that the user may upload and read sales for the branch.

    Access is granted to the brand's owner, brand members with role owner or
    admin, and any member of the branch itself.

    Returns:
        The branch row (id, name, brand_id, brands).

    Raises:
        HTTPException: 404 if the branch does not exist, 403 if the user has
                       no access, 500 on database error.
    """
    try:
        branch = _single(
            supabase_admin.table("branches")
            .select("id, name, brand_id, brands(id, owner_user_id)")
            .eq("id", branch_id)
            .limit(1)
            .execute()
        )
        if branch is None:
            raise HTTPException(status_code=404, detail="Branch not found")

        brand = branch.get("brands") or {}
        if isinstance(brand, list):
            brand = brand[0] if brand else {}
        if brand.get("owner_user_id") == user_id:
            return branch

        branch_member = _single(
            supabase_admin.table("branch_members")
            .select("role")
            .eq("branch_id", branch_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if branch_member is not None:
            return branch

        brand_member = _single(
            supabase_admin.table("brand_members")
            .select("role")
            .eq("brand_id", branch.get("brand_id"))
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if brand_member is not None and brand_member.get("role") in _BRAND_ADMIN_ROLES:
            return branch

        raise HTTPException(
            status_code=403,
            detail="You are not authorized to access this branch",
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Branch access check failed for {branch_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to verify branch access")
