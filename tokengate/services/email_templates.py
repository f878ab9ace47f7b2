"""Plain-text email bodies for the validation-token flows.

Rules per message:
- Email verification: code + link + expiry
- Login: link + site name only. Never the code, IP, device, or location
  stored on the token's context.
- Password reset: link only
"""

from datetime import timedelta

from tokengate.core.email import EmailMessage


def verification_link(frontend_url: str, validation_id: str) -> str:
    """Frontend page where a verification code is entered."""
    return f"{frontend_url.rstrip('/')}/verify/{validation_id}"


def login_link(frontend_url: str, validation_id: str) -> str:
    """Frontend page that exchanges a login link for credentials."""
    return f"{frontend_url.rstrip('/')}/login/verify/{validation_id}"


def password_reset_link(frontend_url: str, validation_id: str) -> str:
    """Frontend page where a new password is chosen."""
    return f"{frontend_url.rstrip('/')}/reset-password/{validation_id}"


def describe_duration(duration: timedelta) -> str:
    """Render a TTL as "24 hours", "15 minutes", "1 hour", ..."""
    minutes = int(duration.total_seconds() // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def _greeting(name: str | None) -> str:
    return f"Hi {name}," if name else "Hi,"


def email_verification(
    *,
    name: str | None,
    code: str,
    link: str,
    expires_in: timedelta,
    site_name: str,
    regenerated: bool = False,
) -> EmailMessage:
    """Verification email carrying both the code and the page to enter it.

    Args:
        name: Recipient display name.
        code: 6-digit verification code.
        link: Verification page URL.
        expires_in: Token lifetime.
        site_name: Product name for the signature.
        regenerated: True when replacing an expired code.

    Returns:
        Rendered message.
    """
    subject = "New verification code" if regenerated else "Verify your email address"
    intro = (
        "Here is your new verification code."
        if regenerated
        else f"Thanks for signing up for {site_name}. Confirm your email address "
        "with the code below."
    )
    body = (
        f"{_greeting(name)}\n\n"
        f"{intro}\n\n"
        f"Verification code: {code}\n\n"
        f"Enter it here:\n{link}\n\n"
        f"This code expires in {describe_duration(expires_in)}. "
        "If you didn't request this, you can safely ignore this email.\n\n"
        f"- {site_name}"
    )
    return EmailMessage(subject=subject, body=body)


def login_verification(
    *, name: str | None, link: str, expires_in: timedelta, site_name: str
) -> EmailMessage:
    """Sign-in email. Contains only the link."""
    body = (
        f"{_greeting(name)}\n\n"
        f"Click this link to sign in to {site_name}:\n\n{link}\n\n"
        f"This link expires in {describe_duration(expires_in)} and can be used once. "
        "If you didn't try to sign in, change your password.\n\n"
        f"- {site_name}"
    )
    return EmailMessage(subject=f"Sign in to {site_name}", body=body)


def password_reset(
    *, name: str | None, link: str, expires_in: timedelta, site_name: str
) -> EmailMessage:
    """Password reset email. Contains only the link."""
    body = (
        f"{_greeting(name)}\n\n"
        f"Click this link to choose a new password:\n\n{link}\n\n"
        f"This link expires in {describe_duration(expires_in)}. "
        "If you didn't request a reset, you can safely ignore this email; "
        "your password has not changed.\n\n"
        f"- {site_name}"
    )
    return EmailMessage(subject="Reset your password", body=body)
