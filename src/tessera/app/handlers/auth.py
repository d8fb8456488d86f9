"""
Authentication handlers.

Failures never reveal whether an email is registered: login answers
"Invalid credentials" for an unknown email and a wrong password alike, and
forgot-password answers the same message whether or not a reset was sent.
"""

import logging
import time
from typing import Any
from urllib.parse import urlencode

from tessera.app.jobs import SEND_EMAIL
from tessera.app.models import PasswordResetModel, RememberTokenModel, UserModel
from tessera.core.exceptions import (
    BadRequestError,
    InvalidCredentialsError,
    NotFoundError,
    Unauthorized,
    ValidationFailure,
)
from tessera.core.security import (
    generate_opaque_token,
    hash_token,
    validate_password_strength,
    verify_password,
)
from tessera.http import Request
from tessera.validation import RuleSet

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If the email exists, a password reset link has been sent."

REGISTER_RULES = RuleSet.parse(
    {
        "name": "required|string|min:3|max:100",
        "email": "required|email|max:255|unique:users,email",
        "password": "required|string|min:8|confirmed",
    }
)
LOGIN_RULES = RuleSet.parse(
    {
        "email": "required|email",
        "password": "required|string",
        "remember": "boolean",
    }
)
REFRESH_RULES = RuleSet.parse({"remember_token": "required|string"})
FORGOT_PASSWORD_RULES = RuleSet.parse({"email": "required|email"})
RESET_PASSWORD_RULES = RuleSet.parse(
    {
        "email": "required|email",
        "token": "required|string",
        "password": "required|string|min:8|confirmed",
    }
)


def _require_strong_password(password: str) -> None:
    ok, message = validate_password_strength(password)
    if not ok:
        raise ValidationFailure(errors={"password": [message]})


def _claims(user: dict[str, Any]) -> dict[str, Any]:
    return {
        "user_id": user["id"],
        "email": user["email"],
        "role": user["role"],
        "status": user["status"],
    }


def _is_true(value: Any) -> bool:
    return value in (True, 1, "1", "true")


def _token_payload(request: Request, user: dict[str, Any]) -> dict[str, Any]:
    token_auth = request.services.token_auth
    return {
        "user": user,
        "token": token_auth.generate_token(_claims(user)),
        "token_type": "bearer",
        "expires_in": token_auth.default_ttl,
    }


async def _issue_remember_token(request: Request, user_id: int) -> str:
    """Store the hash of a new remember token and return the token itself."""
    token = generate_opaque_token()
    tokens = await request.mapper(RememberTokenModel)
    await tokens.create(
        {
            "user_id": user_id,
            "token_hash": hash_token(token),
            "expires_at": int(time.time()) + request.services.token_auth.extended_ttl,
        }
    )
    return token


async def register(request: Request) -> dict[str, Any]:
    """POST /auth/register"""
    data = await request.validate(REGISTER_RULES)
    _require_strong_password(data["password"])

    users = await request.mapper(UserModel)
    user_id = await users.create(
        {
            "name": data["name"],
            "email": data["email"],
            "password": data["password"],
            "role": "user",
            "status": "active",
        }
    )
    user = await users.find(user_id)

    settings = request.services.settings
    await request.services.queue.push(
        SEND_EMAIL,
        {
            "email": user["email"],
            "subject": f"Welcome to {settings.app_name}",
            "body": "Thank you for registering!",
        },
    )

    logger.info(f"User registered: id={user_id}")
    request.set_status(201)
    request.set_message("Registration successful. Welcome email will be sent shortly.")
    return _token_payload(request, user)


async def login(request: Request) -> dict[str, Any]:
    """POST /auth/login"""
    data = await request.validate(LOGIN_RULES)

    users = await request.mapper(UserModel)
    record = await users.find_for_login(data["email"])
    if record is None or not verify_password(data["password"], record["password"]):
        logger.warning("Failed login attempt")
        raise InvalidCredentialsError()

    if record["status"] != "active":
        logger.warning(f"Login refused for inactive user: id={record['id']}")
        raise Unauthorized("Your account is inactive. Please contact support.")

    await users.touch_login(record["id"])
    user = await users.find(record["id"])

    result = _token_payload(request, user)
    if _is_true(data.get("remember")):
        result["remember_token"] = await _issue_remember_token(request, user["id"])

    logger.info(f"User logged in: id={user['id']}")
    request.set_message("Login successful")
    return result


async def refresh(request: Request) -> dict[str, Any]:
    """
    POST /auth/refresh

    Exchange a remember token for a new access token. The remember token is
    rotated: the old row is deleted and a new token is returned.
    """
    data = await request.validate(REFRESH_RULES)

    tokens = await request.mapper(RememberTokenModel)
    row = await tokens.find_valid(hash_token(data["remember_token"]))
    if row is None:
        raise Unauthorized("Unauthorized - Invalid or expired token")
    await tokens.delete(row["id"])

    users = await request.mapper(UserModel)
    user = await users.find(row["user_id"])
    if user is None or user["status"] != "active":
        raise Unauthorized("Unauthorized - Invalid or expired token")

    result = _token_payload(request, user)
    result["remember_token"] = await _issue_remember_token(request, user["id"])
    request.set_message("Token refreshed")
    return result


async def logout(request: Request) -> None:
    """
    POST /auth/logout

    Access tokens are stateless, so the client discards its own. A remember
    token sent along is revoked.
    """
    remember_token = request.input("remember_token")
    if remember_token:
        tokens = await request.mapper(RememberTokenModel)
        await tokens.delete_where(
            {"token_hash": hash_token(str(remember_token)), "user_id": request.principal.user_id}
        )
    request.set_message("Logout successful")


async def me(request: Request) -> dict[str, Any]:
    """GET /auth/me"""
    users = await request.mapper(UserModel)
    user = await users.find(request.principal.user_id)
    if user is None:
        raise NotFoundError("User")
    return {"user": user}


async def forgot_password(request: Request) -> None:
    """
    POST /auth/forgot-password

    Replaces any earlier reset token for the email and queues the link.
    """
    data = await request.validate(FORGOT_PASSWORD_RULES)
    email = data["email"]
    request.set_message(FORGOT_PASSWORD_MESSAGE)

    users = await request.mapper(UserModel)
    if await users.find_by_email(email) is None:
        return None

    settings = request.services.settings
    token = generate_opaque_token()

    resets = await request.mapper(PasswordResetModel)
    await resets.delete_for_email(email)
    await resets.create(
        {
            "email": email,
            "token": token,
            "expires_at": int(time.time()) + settings.password_reset_ttl,
        }
    )

    reset_url = (
        f"{settings.frontend_url.rstrip('/')}/reset-password?"
        + urlencode({"token": token, "email": email})
    )
    await request.services.queue.push(
        SEND_EMAIL,
        {
            "email": email,
            "subject": f"Password Reset Request - {settings.app_name}",
            "body": (
                "You requested to reset your password. Open the link below to choose "
                f"a new one:\n\n{reset_url}\n\n"
                f"This link will expire in {settings.password_reset_ttl // 60} minutes. "
                "If you didn't request this, please ignore this email."
            ),
        },
    )
    return None


async def reset_password(request: Request) -> None:
    """
    POST /auth/reset-password

    The password change, the removal of the reset token and the revocation
    of remember tokens commit together.
    """
    data = await request.validate(RESET_PASSWORD_RULES)
    _require_strong_password(data["password"])
    email = data["email"]

    resets = await request.mapper(PasswordResetModel)
    if await resets.find_valid(email, data["token"]) is None:
        raise BadRequestError("Invalid or expired reset token")

    users = await request.mapper(UserModel)
    user = await users.find_by_email(email)
    if user is None:
        raise NotFoundError("User")

    async with request.services.database.transaction() as conn:
        await (await request.mapper(UserModel, conn)).update(user["id"], {"password": data["password"]})
        await (await request.mapper(PasswordResetModel, conn)).delete_for_email(email)
        await (await request.mapper(RememberTokenModel, conn)).delete_where({"user_id": user["id"]})

    settings = request.services.settings
    await request.services.queue.push(
        SEND_EMAIL,
        {
            "email": email,
            "subject": f"Password Reset Successful - {settings.app_name}",
            "body": (
                "Your password has been successfully reset. "
                "If you didn't make this change, please contact us immediately."
            ),
        },
    )

    logger.info(f"Password reset for user id={user['id']}")
    request.set_message("Password has been reset successfully. You can now login with your new password.")
