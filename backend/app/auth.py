"""
Request authentication for the mail center API.

- get_current_user: Supabase JWT bearer token -> user id. Verified locally
  (HS256, python-jose) when SUPABASE_JWT_SECRET is set, otherwise through
  the Supabase Auth API.
- verify_fee_ownership: loads a package_fees row and checks it belongs to
  the caller, returning the row so endpoints don't select it twice.
- verify_contact_ownership: same check for a contacts row.
- verify_cron_secret: guards the scheduler endpoint with X-Cron-Secret.
"""

import hmac
import logging
import os
from fastapi import HTTPException, Header
from typing import Optional
from app.db import supabase, supabase_admin
from app.services.fee_store import FEE_SELECT

logger = logging.getLogger(__name__)

SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    Return the authenticated user's id from an ``Authorization: Bearer`` header.

    Raises:
        HTTPException: 401 if the header is missing, malformed, or the token
            does not verify.
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")

    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    if SUPABASE_JWT_SECRET:
        return _verify_jwt_locally(token)
    return await _verify_jwt_remotely(token)


def _verify_jwt_locally(token: str) -> str:
    """Decode a Supabase HS256 token with the project secret; returns ``sub``."""
    from jose import jwt, JWTError, ExpiredSignatureError

    try:
        payload = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            # Supabase tokens carry aud="authenticated", not a per-app audience
            options={"verify_aud": False},
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
    """Ask the Supabase Auth API who owns ``token``."""
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        if "expired" in str(e).lower():
            raise HTTPException(status_code=401, detail="Token expired")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not response or not response.user:
        raise HTTPException(status_code=401, detail="Invalid token")
    return response.user.id


async def verify_fee_ownership(fee_id: str, user_id: str) -> dict:
    """
    Load a fee (with its mail item joined) and check the caller owns it.

    Returns:
        The package_fees row dict.

    Raises:
        HTTPException: 404 if the fee does not exist, 403 if another user
            owns it, 500 if the lookup itself fails.
    """
    try:
        result = (
            supabase_admin.table("package_fees")
            .select(FEE_SELECT)
            .eq("fee_id", fee_id)
            .execute()
        )
    except Exception as e:
        logger.error(f"Fee lookup failed for {fee_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to verify ownership")

    if not result.data:
        raise HTTPException(status_code=404, detail="Fee not found")

    fee = result.data[0]
    if fee.get("user_id") != user_id:
        raise HTTPException(status_code=403, detail="You are not authorized to access this fee")
    return fee


async def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """
    Reject scheduler calls that don't present the shared CRON_SECRET.

    Raises:
        HTTPException: 401 when the header is missing, wrong, or no secret is
            configured on the server.
    """
    expected = os.environ.get("CRON_SECRET")
    if not expected or not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        logger.error("Unauthorized cron attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")


async def verify_contact_ownership(contact_id: str, user_id: str) -> dict:
    """
    Check that a contact belongs to the caller and return its row.

    Raises:
        HTTPException: 404 if missing, 403 if owned by another user, 500 on
            database error.
    """
    try:
        result = (
            supabase_admin.table("contacts")
            .select("contact_id, user_id, contact_person, company_name, mailbox_number")
            .eq("contact_id", contact_id)
            .execute()
        )
    except Exception as e:
        logger.error(f"Contact lookup failed for {contact_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to verify ownership")

    if not result.data:
        raise HTTPException(status_code=404, detail="Contact not found")

    contact = result.data[0]
    if contact.get("user_id") != user_id:
        raise HTTPException(status_code=403, detail="You are not authorized to access this contact")
    return contact
