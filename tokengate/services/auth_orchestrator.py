"""Auth orchestrator: registration, login, password reset, resend, refresh.

Composes the TokenStore, the token policy, CredentialIssuer, UserStore and
Mailer. Every public method returns either its success value or an
AuthFailure; nothing here raises for an expected outcome.

Flows:
- register: create user, mint email_verification token, mail code + link
- verify / submit_code: code-based verification with attempt accounting
- login / complete_login: password check, then magic link for credentials
- refresh: refresh credential in, brand-new pair out
- forgot_password / check_reset_link / reset_password: link-only reset
- resend / resend_verification: regenerate an expired token

Ordering rules:
- A token is written (and committed) before its email is sent. Mail failure
  never rolls the token back; the client can use resend.
- An attempt is charged before the secret comparison, so every guess costs
  budget whether it is right or wrong.
- used_at is set only after a secret matched or a link was exchanged.
- A password reset consumes its link before writing the new hash.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from tokengate.core.auth import hash_password, verify_password
from tokengate.core.credentials import CredentialFailure, CredentialIssuer
from tokengate.core.email import EmailMessage, Mailer
from tokengate.repositories.token_store import DuplicateTokenError, TokenStore
from tokengate.repositories.user_store import (
    DuplicateEmailError,
    UserAccount,
    UserStore,
)
from tokengate.services import email_templates
from tokengate.services.auth_results import (
    AuthErrorCode,
    AuthFailure,
    CodeVerification,
    IssuedToken,
    LinkStatus,
    Registration,
    SignedIn,
    VerifiedToken,
)
from tokengate.services.token_policy import (
    SecretFormat,
    TokenKind,
    TokenState,
    ValidationToken,
    can_attempt,
    is_expired,
    is_used,
    new_token,
    policy_for,
    secret_matches,
    state_of,
)

logger = logging.getLogger(__name__)

# Fresh identifiers are retried on a uniqueness collision (6-digit codes can
# collide with other unused tokens)
_MINT_RETRIES = 5

# Kinds a user may submit a typed code for
_CODE_KINDS = frozenset(
    kind for kind in TokenKind if policy_for(kind).secret_format is SecretFormat.NUMERIC
)

# Kinds that have an email flow, and therefore a resend flow
_MAILED_KINDS = frozenset(
    {
        TokenKind.EMAIL_VERIFICATION,
        TokenKind.LOGIN_VERIFICATION,
        TokenKind.PASSWORD_RESET,
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class OutgoingMail:
    """A rendered message waiting to be delivered after the response."""

    to: str
    message: EmailMessage


class AuthOrchestrator:
    """Implements the validation-token flows over injected collaborators.

    Args:
        tokens: Validation token persistence.
        users: User account persistence.
        issuer: Signs and verifies credential pairs.
        mailer: Email transport.
        frontend_url: Base URL for links in emails.
        site_name: Product name used in emails.
        mail_timeout: Upper bound in seconds for one mail dispatch.
        require_verified_email: Refuse login until the email is verified.
        clock: Source of "now" (UTC).
    """

    def __init__(
        self,
        *,
        tokens: TokenStore,
        users: UserStore,
        issuer: CredentialIssuer,
        mailer: Mailer,
        frontend_url: str,
        site_name: str,
        mail_timeout: float,
        require_verified_email: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._tokens = tokens
        self._users = users
        self._issuer = issuer
        self._mailer = mailer
        self._frontend_url = frontend_url
        self._site_name = site_name
        self._mail_timeout = mail_timeout
        self._require_verified_email = require_verified_email
        self._clock = clock

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(
        self,
        *,
        name: str | None,
        email: str,
        password: str,
        context: Mapping[str, Any],
    ) -> Registration | AuthFailure:
        """Create an account and send its email verification code.

        The password must already have passed ensure_password_acceptable().

        Args:
            name: Display name.
            email: Email address (normalized here).
            password: Plain-text password.
            context: Client metadata for the verification token.

        Returns:
            Registration, or EMAIL_ALREADY_EXISTS.
        """
        email = email.strip().lower()
        if await self._users.find_by_email(email) is not None:
            return AuthFailure(AuthErrorCode.EMAIL_ALREADY_EXISTS)

        try:
            user = await self._users.create(
                email=email, name=name, password_hash=hash_password(password)
            )
        except DuplicateEmailError:
            return AuthFailure(AuthErrorCode.EMAIL_ALREADY_EXISTS)
        issued = await self._issue(user, TokenKind.EMAIL_VERIFICATION, context)
        logger.info("Registered user %s", user.id)
        return Registration(user=user, token=issued)

    # =========================================================================
    # Token status and code verification
    # =========================================================================

    async def link_status(self, validation_id: str) -> LinkStatus | AuthFailure:
        """Report whether a token is still usable, without changing it.

        Returns:
            LinkStatus, or NOT_FOUND / EXPIRED / ALREADY_USED /
            MAX_ATTEMPTS_EXCEEDED.
        """
        token = await self._tokens.get(validation_id)
        if token is None:
            return AuthFailure(AuthErrorCode.NOT_FOUND)
        failure = _unusable(token, self._clock())
        if failure is not None:
            return failure
        return LinkStatus(email=token.email, kind=token.kind, expires_at=token.expires_at)

    async def verify(
        self,
        validation_id: str,
        secret: str,
        *,
        kinds: frozenset[TokenKind] | None = None,
    ) -> VerifiedToken | AuthFailure:
        """Check a presented secret against a token and consume it on match.

        Check order: NOT_FOUND, INVALID_TYPE, EXPIRED (no attempt charged),
        ALREADY_USED, MAX_ATTEMPTS_EXCEEDED. Then one attempt is charged
        atomically, then the secret is compared in constant time.

        A wrong guess that uses up the last attempt reports
        MAX_ATTEMPTS_EXCEEDED: the token is locked from then on.

        Args:
            validation_id: Token identifier.
            secret: Secret presented by the user.
            kinds: When given, other kinds fail with INVALID_TYPE.

        Returns:
            VerifiedToken, or an AuthFailure (INVALID_TOKEN carries
            attempts_remaining).
        """
        now = self._clock()
        token = await self._tokens.get(validation_id)
        if token is None:
            return AuthFailure(AuthErrorCode.NOT_FOUND)
        if kinds is not None and token.kind not in kinds:
            return AuthFailure(AuthErrorCode.INVALID_TYPE)
        failure = _unusable(token, now)
        if failure is not None:
            return failure

        charged = await self._tokens.record_attempt(validation_id, now)
        if charged is None:
            # A concurrent request changed the row between read and charge
            current = await self._tokens.get(validation_id)
            if current is None:
                return AuthFailure(AuthErrorCode.NOT_FOUND)
            return _unusable(current, now) or AuthFailure(
                AuthErrorCode.MAX_ATTEMPTS_EXCEEDED
            )

        if not secret_matches(charged, secret):
            remaining = charged.attempts_remaining
            if remaining == 0:
                logger.info(
                    "Validation token %s locked after %d attempts",
                    charged.validation_id[:8],
                    charged.attempts,
                )
                return AuthFailure(AuthErrorCode.MAX_ATTEMPTS_EXCEEDED)
            return AuthFailure(AuthErrorCode.INVALID_TOKEN, attempts_remaining=remaining)

        used = await self._tokens.mark_used(validation_id, now)
        if used is None:
            return AuthFailure(AuthErrorCode.ALREADY_USED)
        return VerifiedToken(user_id=used.user_id, email=used.email, kind=used.kind)

    async def submit_code(
        self, validation_id: str, secret: str
    ) -> CodeVerification | AuthFailure:
        """Verify a typed code and apply its kind's effect.

        - email_verification: marks the account's email verified
        - login_verification: issues a credential pair
        - other code kinds: verification only

        Link-only kinds (opaque secrets) fail with INVALID_TYPE.
        """
        verified = await self.verify(validation_id, secret, kinds=_CODE_KINDS)
        if isinstance(verified, AuthFailure):
            return verified

        if verified.kind is TokenKind.EMAIL_VERIFICATION:
            if not await self._users.set_email_verified(verified.user_id, self._clock()):
                return AuthFailure(AuthErrorCode.USER_NOT_FOUND)
            logger.info("Email verified for user %s", verified.user_id)
            return CodeVerification(verified=verified)

        if verified.kind is TokenKind.LOGIN_VERIFICATION:
            user = await self._users.find_by_id(verified.user_id)
            if user is None:
                return AuthFailure(AuthErrorCode.USER_NOT_FOUND)
            credentials = self._issuer.issue_pair(
                user_id=user.id, email=user.email, name=user.name
            )
            return CodeVerification(verified=verified, credentials=credentials, user=user)

        return CodeVerification(verified=verified)

    # =========================================================================
    # Login
    # =========================================================================

    async def login(
        self, *, email: str, password: str, context: Mapping[str, Any]
    ) -> IssuedToken | AuthFailure:
        """Check a password and mail a single-use sign-in link.

        Unknown email and wrong password both return INVALID_CREDENTIALS after
        one bcrypt comparison. Prior unused login tokens are deleted before
        the new one is minted.

        Returns:
            IssuedToken, or INVALID_CREDENTIALS / EMAIL_NOT_VERIFIED.
        """
        user = await self._users.find_by_email(email.strip().lower())
        matched = verify_password(password, user.password_hash if user else None)
        if user is None or not matched:
            return AuthFailure(AuthErrorCode.INVALID_CREDENTIALS)

        if self._require_verified_email and not user.is_email_verified:
            return AuthFailure(AuthErrorCode.EMAIL_NOT_VERIFIED)

        await self._tokens.delete_unused_for_user(user.id, TokenKind.LOGIN_VERIFICATION)
        return await self._issue(user, TokenKind.LOGIN_VERIFICATION, context)

    async def complete_login(self, validation_id: str) -> SignedIn | AuthFailure:
        """Exchange a login link for a credential pair.

        No attempt accounting: the link's identifier is the secret. The pair
        is minted first and the token consumed second; if another request
        consumed it in between, the pair is discarded.

        Returns:
            SignedIn, or NOT_FOUND / INVALID_TYPE / EXPIRED / ALREADY_USED /
            MAX_ATTEMPTS_EXCEEDED / USER_NOT_FOUND.
        """
        now = self._clock()
        token = await self._load_link(validation_id, TokenKind.LOGIN_VERIFICATION, now)
        if isinstance(token, AuthFailure):
            return token

        user = await self._users.find_by_id(token.user_id)
        if user is None:
            return AuthFailure(AuthErrorCode.USER_NOT_FOUND)

        credentials = self._issuer.issue_pair(
            user_id=user.id, email=user.email, name=user.name
        )
        if await self._tokens.mark_used(validation_id, now) is None:
            return AuthFailure(AuthErrorCode.ALREADY_USED)
        logger.info("User %s signed in via login link", user.id)
        return SignedIn(user=user, credentials=credentials)

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self, refresh_token: str) -> SignedIn | AuthFailure:
        """Rotate a refresh credential into a brand-new pair.

        The user is reloaded so the new access credential carries current
        display claims. The old refresh credential is not revoked.

        Returns:
            SignedIn, or REFRESH_TOKEN_ERROR / USER_NOT_FOUND.
        """
        claims = self._issuer.verify_refresh(refresh_token)
        if isinstance(claims, CredentialFailure):
            logger.debug("Refresh rejected: %s", claims.value)
            return AuthFailure(AuthErrorCode.REFRESH_TOKEN_ERROR)

        user = await self._users.find_by_id(claims.user_id)
        if user is None:
            return AuthFailure(AuthErrorCode.USER_NOT_FOUND)

        credentials = self._issuer.issue_pair(
            user_id=user.id, email=user.email, name=user.name
        )
        return SignedIn(user=user, credentials=credentials)

    # =========================================================================
    # Password reset
    # =========================================================================

    async def forgot_password(
        self, *, email: str, context: Mapping[str, Any]
    ) -> OutgoingMail | None:
        """Prepare a password reset link for an email address.

        Never reports whether the account exists: the caller must respond
        identically either way and deliver the returned mail out of band.
        An active reset token is reused; otherwise stale ones are replaced.

        Returns:
            The reset email to deliver, or None if there is no such account.
        """
        user = await self._users.find_by_email(email.strip().lower())
        if user is None:
            return None

        now = self._clock()
        token = await self._tokens.get_latest_for_user(user.id, TokenKind.PASSWORD_RESET)
        if token is None or state_of(token, now) is not TokenState.ACTIVE:
            await self._tokens.delete_unused_for_user(user.id, TokenKind.PASSWORD_RESET)
            token, _secret = await self._mint(user, TokenKind.PASSWORD_RESET, context)

        return OutgoingMail(to=user.email, message=self._reset_message(user, token))

    async def check_reset_link(self, validation_id: str) -> LinkStatus | AuthFailure:
        """Report whether a reset link is usable. Does not consume it."""
        token = await self._load_link(
            validation_id, TokenKind.PASSWORD_RESET, self._clock()
        )
        if isinstance(token, AuthFailure):
            return token
        return LinkStatus(email=token.email, kind=token.kind, expires_at=token.expires_at)

    async def reset_password(
        self, validation_id: str, new_password: str
    ) -> UserAccount | AuthFailure:
        """Consume a reset link, then set the new password.

        The password must already have passed ensure_password_acceptable().
        Of concurrent submits for one link only the one that consumed it
        writes a hash. Unused login links for the account are discarded.

        Returns:
            The account, or NOT_FOUND / INVALID_TYPE / EXPIRED / ALREADY_USED /
            MAX_ATTEMPTS_EXCEEDED / USER_NOT_FOUND.
        """
        now = self._clock()
        token = await self._load_link(validation_id, TokenKind.PASSWORD_RESET, now)
        if isinstance(token, AuthFailure):
            return token

        user = await self._users.find_by_id(token.user_id)
        if user is None:
            return AuthFailure(AuthErrorCode.USER_NOT_FOUND)

        if await self._tokens.mark_used(validation_id, now) is None:
            logger.warning("Reset token %s consumed concurrently", validation_id[:8])
            return AuthFailure(AuthErrorCode.ALREADY_USED)
        if not await self._users.update_password_hash(user.id, hash_password(new_password)):
            return AuthFailure(AuthErrorCode.USER_NOT_FOUND)

        await self._tokens.delete_unused_for_user(user.id, TokenKind.LOGIN_VERIFICATION)
        logger.info("Password reset for user %s", user.id)
        return user

    # =========================================================================
    # Resend / regenerate
    # =========================================================================

    async def resend(
        self, validation_id: str, *, context: Mapping[str, Any]
    ) -> IssuedToken | AuthFailure:
        """Replace an expired token with a new one and re-send its email.

        Only an Expired token may be regenerated. A locked token stays locked
        until it expires; a used one is final.

        Returns:
            IssuedToken for the replacement, or NOT_FOUND / INVALID_TYPE /
            ALREADY_USED / MAX_ATTEMPTS_EXCEEDED / TOKEN_STILL_ACTIVE /
            USER_NOT_FOUND / EMAIL_ALREADY_VERIFIED.
        """
        token = await self._tokens.get(validation_id)
        if token is None:
            return AuthFailure(AuthErrorCode.NOT_FOUND)
        if token.kind not in _MAILED_KINDS:
            return AuthFailure(AuthErrorCode.INVALID_TYPE)

        blocked = _blocks_regeneration(state_of(token, self._clock()))
        if blocked is not None:
            return blocked

        user = await self._users.find_by_id(token.user_id)
        if user is None:
            return AuthFailure(AuthErrorCode.USER_NOT_FOUND)
        if token.kind is TokenKind.EMAIL_VERIFICATION and user.is_email_verified:
            return AuthFailure(AuthErrorCode.EMAIL_ALREADY_VERIFIED)

        await self._tokens.delete_unused_for_user(user.id, token.kind)
        return await self._issue(user, token.kind, context, regenerated=True)

    async def resend_verification(
        self, *, email: str, context: Mapping[str, Any]
    ) -> IssuedToken | AuthFailure:
        """Send a fresh email verification code to an unverified account.

        Refused while the latest code is still active or locked.

        Returns:
            IssuedToken, or USER_NOT_FOUND / EMAIL_ALREADY_VERIFIED /
            TOKEN_STILL_ACTIVE / MAX_ATTEMPTS_EXCEEDED.
        """
        user = await self._users.find_by_email(email.strip().lower())
        if user is None:
            return AuthFailure(AuthErrorCode.USER_NOT_FOUND)
        if user.is_email_verified:
            return AuthFailure(AuthErrorCode.EMAIL_ALREADY_VERIFIED)

        latest = await self._tokens.get_latest_for_user(
            user.id, TokenKind.EMAIL_VERIFICATION
        )
        if latest is not None:
            blocked = _blocks_regeneration(state_of(latest, self._clock()))
            if blocked is not None:
                return blocked

        await self._tokens.delete_unused_for_user(user.id, TokenKind.EMAIL_VERIFICATION)
        return await self._issue(
            user, TokenKind.EMAIL_VERIFICATION, context, regenerated=latest is not None
        )

    # =========================================================================
    # Mail delivery
    # =========================================================================

    async def deliver(self, mail: OutgoingMail) -> bool:
        """Send a rendered message, bounded by the mail timeout.

        Never raises for a delivery failure; returns False instead.
        """
        try:
            async with asyncio.timeout(self._mail_timeout):
                result = await self._mailer.send(
                    to=mail.to, subject=mail.message.subject, body=mail.message.body
                )
        except TimeoutError:
            logger.warning("Mail dispatch timed out after %.1fs", self._mail_timeout)
            return False
        if not result.success:
            logger.warning("Mail dispatch failed: %s", result.error)
        return result.success

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _issue(
        self,
        user: UserAccount,
        kind: TokenKind,
        context: Mapping[str, Any],
        *,
        regenerated: bool = False,
    ) -> IssuedToken:
        token, secret = await self._mint(user, kind, context)
        email_sent = False
        message = self._render(user, token, secret=secret, regenerated=regenerated)
        if message is not None:
            email_sent = await self.deliver(OutgoingMail(to=user.email, message=message))
        return IssuedToken(
            validation_id=token.validation_id,
            kind=token.kind,
            expires_at=token.expires_at,
            email_sent=email_sent,
        )

    async def _mint(
        self, user: UserAccount, kind: TokenKind, context: Mapping[str, Any]
    ) -> tuple[ValidationToken, str]:
        for _ in range(_MINT_RETRIES):
            token, secret = new_token(
                user_id=user.id,
                email=user.email,
                kind=kind,
                now=self._clock(),
                context=context,
            )
            try:
                return await self._tokens.create(token), secret
            except DuplicateTokenError:
                logger.info("Token identifier collision for kind %s, retrying", kind.value)
        msg = f"Could not mint a unique {kind.value} token after {_MINT_RETRIES} tries"
        raise RuntimeError(msg)

    def _render(
        self,
        user: UserAccount,
        token: ValidationToken,
        *,
        secret: str | None,
        regenerated: bool = False,
    ) -> EmailMessage | None:
        expires_in = token.expires_at - token.created_at
        match token.kind:
            case TokenKind.EMAIL_VERIFICATION:
                if secret is None:
                    msg = "Email verification mail needs the plaintext code"
                    raise ValueError(msg)
                return email_templates.email_verification(
                    name=user.name,
                    code=secret,
                    link=email_templates.verification_link(
                        self._frontend_url, token.validation_id
                    ),
                    expires_in=expires_in,
                    site_name=self._site_name,
                    regenerated=regenerated,
                )
            case TokenKind.LOGIN_VERIFICATION:
                return email_templates.login_verification(
                    name=user.name,
                    link=email_templates.login_link(self._frontend_url, token.validation_id),
                    expires_in=expires_in,
                    site_name=self._site_name,
                )
            case TokenKind.PASSWORD_RESET:
                return self._reset_message(user, token)
            case (
                TokenKind.EMAIL_CHANGE
                | TokenKind.PHONE_VERIFICATION
                | TokenKind.TWO_FACTOR
                | TokenKind.ACCOUNT_RECOVERY
            ):
                return None

    def _reset_message(self, user: UserAccount, token: ValidationToken) -> EmailMessage:
        return email_templates.password_reset(
            name=user.name,
            link=email_templates.password_reset_link(
                self._frontend_url, token.validation_id
            ),
            expires_in=token.expires_at - token.created_at,
            site_name=self._site_name,
        )

    async def _load_link(
        self, validation_id: str, kind: TokenKind, now: datetime
    ) -> ValidationToken | AuthFailure:
        token = await self._tokens.get(validation_id)
        if token is None:
            return AuthFailure(AuthErrorCode.NOT_FOUND)
        if token.kind is not kind:
            return AuthFailure(AuthErrorCode.INVALID_TYPE)
        return _unusable(token, now) or token


def _unusable(token: ValidationToken, now: datetime) -> AuthFailure | None:
    """Failure for a token that can no longer succeed, in check order."""
    if is_expired(token, now):
        return AuthFailure(AuthErrorCode.EXPIRED)
    if is_used(token):
        return AuthFailure(AuthErrorCode.ALREADY_USED)
    if not can_attempt(token, now):
        return AuthFailure(AuthErrorCode.MAX_ATTEMPTS_EXCEEDED)
    return None


def _blocks_regeneration(state: TokenState) -> AuthFailure | None:
    """Failure when a token's state forbids minting its replacement."""
    match state:
        case TokenState.EXPIRED:
            return None
        case TokenState.USED:
            return AuthFailure(AuthErrorCode.ALREADY_USED)
        case TokenState.LOCKED:
            return AuthFailure(AuthErrorCode.MAX_ATTEMPTS_EXCEEDED)
        case TokenState.ACTIVE:
            return AuthFailure(AuthErrorCode.TOKEN_STILL_ACTIVE)

