"""
api/routes/v1/users.py -- Admin-only account management.

Routes:
  POST /api/v1/users/invite                 -- create an invite; returns the link (admin only)
  POST /api/v1/users/{user_id}/force-reset  -- email a password reset link (admin only)

The invite link is returned to the admin rather than emailed; the admin
passes it on out of band.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import InviteRequest, InviteResponse, MessageResponse
from auth.accounts import AccountService
from auth.dependencies import require_admin
from auth.errors import DuplicateIdentity, InvalidInvite, NotFound
from auth.principal import Authenticated

logger = logging.getLogger("credgate.api.users")

# Auth policy: every route requires the ADMIN role (require_admin).
router = APIRouter()


@router.post("/users/invite", response_model=InviteResponse, status_code=201)
def invite_user(
    request: Request,
    body: InviteRequest,
    principal: Authenticated = Depends(require_admin),
) -> InviteResponse:
    """Invite a manager. Only the MANAGER role can be granted by invite."""
    accounts: AccountService = request.app.state.accounts
    try:
        link = accounts.invite(body.username, body.role, body.manager_id, request.app.state.clock())
    except InvalidInvite as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_invite", "message": str(exc)},
        ) from exc
    except DuplicateIdentity as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": str(exc)},
        ) from exc
    logger.info("Invite created by %s (manager_id=%s)", principal.username, body.manager_id)
    return InviteResponse(invite_link=link)


@router.post("/users/{user_id}/force-reset", response_model=MessageResponse)
def force_password_reset(
    request: Request,
    user_id: int,
    principal: Authenticated = Depends(require_admin),
) -> MessageResponse:
    """Send a password reset link to any account."""
    accounts: AccountService = request.app.state.accounts
    try:
        accounts.send_reset_link(user_id, request.app.state.clock())
    except NotFound as exc:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        ) from exc
    logger.info("Password reset forced by %s (user_id=%s)", principal.username, user_id)
    return MessageResponse(message="Password reset link sent.")
