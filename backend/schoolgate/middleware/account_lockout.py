"""Login pre-check against the account lockout tracker."""

from fastapi import status

from schoolgate.middleware.pipeline import ALLOW, Decision, Reject, SecurityContext
from schoolgate.services.auth import AuthService
from schoolgate.services.lockout import LockoutStatus


def locked_response(locked: LockoutStatus) -> Reject:
    return Reject(
        status.HTTP_423_LOCKED,
        {
            "message": locked.message,
            "lockoutUntil": locked.lockout_until.isoformat(),
            "remainingMinutes": locked.remaining_minutes,
        },
    )


async def check_account_lockout(ctx: SecurityContext) -> Decision:
    """Refuse a login for a locked identity before credentials are compared.

    Resolves the identity named in the login body onto ``ctx.login_user`` for
    the credential check that follows.
    """
    if not ctx.login_identifier:
        return ALLOW

    if ctx.login_user is None:
        ctx.login_user = await AuthService(ctx.db).get_user_by_email(ctx.login_identifier)

    locked = await ctx.services.lockout.precheck(
        ctx.db, ctx.login_user, {**ctx.request_metadata(), "email": ctx.login_identifier}
    )
    if locked is not None:
        return locked_response(locked)
    return ALLOW
