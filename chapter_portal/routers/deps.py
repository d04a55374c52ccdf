# chapter_portal/routers/deps.py
# Shared FastAPI dependencies: the application context and the calling member

from __future__ import annotations

import hmac

from fastapi import Depends, Request

from chapter_portal.constants import ADMIN_POSITION, RUSH_CHAIR
from chapter_portal.middleware.error_handler import ForbiddenError, UnauthorizedError
from chapter_portal.services.buttons_service import ButtonsService
from chapter_portal.services.context import AppContext
from chapter_portal.services.polls_service import PollsService
from chapter_portal.services.roster_service import Member, RosterService, can_manage_roster
from chapter_portal.services.rush_service import RushService


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_roster_service(ctx: AppContext = Depends(get_context)) -> RosterService:
    return RosterService(ctx)


def get_polls_service(ctx: AppContext = Depends(get_context)) -> PollsService:
    return PollsService(ctx)


def get_buttons_service(ctx: AppContext = Depends(get_context)) -> ButtonsService:
    return ButtonsService(ctx)


def get_rush_service(ctx: AppContext = Depends(get_context)) -> RushService:
    return RushService(ctx)


async def get_current_user(
    request: Request,
    ctx: AppContext = Depends(get_context),
    roster: RosterService = Depends(get_roster_service),
) -> Member:
    """
    The member making the request.
    Identity comes from the sign-in proxy header; membership from the roster.
    """
    email = (request.headers.get(ctx.settings.AUTH_EMAIL_HEADER) or "").strip()
    if not email:
        raise UnauthorizedError()
    member = await roster.find_member(email)
    if member is None:
        if ctx.settings.DEV_MODE:
            return Member(email=email, name=email.split("@")[0], position="")
        raise ForbiddenError("This account is not on the chapter roster")
    return member


async def require_roster_manager(user: Member = Depends(get_current_user)) -> Member:
    if not can_manage_roster(user.position):
        raise ForbiddenError("Only Alpha, Beta, Sigma or Chi can edit the roster")
    return user


async def require_admin(
    user: Member = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> Member:
    if not (ctx.settings.DEV_MODE or user.holds(ADMIN_POSITION)):
        raise ForbiddenError("Only Chi (Tech Chair) can access the admin dashboard")
    return user


async def require_rush_chair(
    user: Member = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> Member:
    if not (ctx.settings.DEV_MODE or user.holds(RUSH_CHAIR)):
        raise ForbiddenError("Only the Rho (Rush Chair) can change rush settings")
    return user


REFRESH_TOKEN_HEADER = "X-Refresh-Token"


async def require_refresh_caller(
    request: Request,
    ctx: AppContext = Depends(get_context),
    roster: RosterService = Depends(get_roster_service),
) -> str:
    """A spreadsheet trigger holding the shared token, otherwise a signed-in member."""
    expected = ctx.settings.REFRESH_TOKEN
    presented = request.headers.get(REFRESH_TOKEN_HEADER)
    if expected and presented:
        if hmac.compare_digest(presented.encode(), expected.encode()):
            return "trigger"
        raise UnauthorizedError("Invalid refresh token")
    member = await get_current_user(request, ctx, roster)
    return member.email
