import secrets
import hashlib
from datetime import datetime, timezone, timedelta
from sqlalchemy import select
from sqlalchemy.orm import Session
from jose import jwt, JWTError, ExpiredSignatureError
from models.refresh_tokens import RefreshToken, RefreshTokenStatus
from models.users import User
from core.config import settings
from core.exceptions import InvalidCredentialError
from utils.logger import get_logger

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def blacklist_key(token: str) -> str:
    return f"blacklist:{hash_token(token)}"


class TokenService:
    """
    Handles all token operations: creation, validation, rotation, and revocation.

    Access tokens are stateless JWTs, revocable only through the blacklist in
    the volatile store. Refresh tokens are JWTs backed by a RefreshToken record;
    a refresh token is usable only while its record is active.
    """

    @staticmethod
    def _reject(reason: str, **context) -> InvalidCredentialError:
        logger.warning(
            "Token rejected",
            extra={"reason": reason, **context}
        )
        return InvalidCredentialError(reason)

    @staticmethod
    def create_access_token(user_id: str, role: str, expires_delta: timedelta = None) -> str:
        """
        Creates a JWT access token.

        Args:
            user_id: Subject of the token
            role: User's role, carried for coarse role checks
            expires_delta: Token lifetime (default: ACCESS_TOKEN_EXPIRE_MINUTES)
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        now = datetime.now(timezone.utc)

        payload = {
            "sub": user_id,
            "role": role,
            "type": ACCESS,
            "iat": now,
            "exp": now + expires_delta
        }

        return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def create_refresh_token(user_id: str, expires_delta: timedelta = None):
        """
        Creates a JWT refresh token.

        The random jti makes every refresh token unique, even when two are
        issued for the same user within the same second.

        Returns:
            Tuple of (refresh_token_string, expires_at)
        """
        if expires_delta is None:
            expires_delta = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

        now = datetime.now(timezone.utc)
        expire = now + expires_delta

        payload = {
            "sub": user_id,
            "type": REFRESH,
            "jti": secrets.token_urlsafe(32),
            "iat": now,
            "exp": expire
        }

        refresh_token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

        return refresh_token, expire

    @staticmethod
    def _issue(user: User, source_ip: str | None, db: Session):
        """
        Builds a token pair and adds the refresh record to the session
        without committing, so callers can make it part of a larger transaction.
        """
        access_token = TokenService.create_access_token(user.id, user.role)
        refresh_token, expires_at = TokenService.create_refresh_token(user.id)

        record = RefreshToken(
            user_id=user.id,
            token_hash=hash_token(refresh_token),
            expires_at=expires_at,
            status=RefreshTokenStatus.ACTIVE.value,
            created_by_ip=source_ip
        )
        db.add(record)
        db.flush()

        tokens = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer"
        }
        return tokens, record

    @staticmethod
    def issue_tokens(user: User, source_ip: str | None, db: Session):
        """
        Creates access token + refresh token pair.
        Always stores a new refresh token record.

        Returns:
            Dictionary with access_token, refresh_token, and token_type
        """
        try:
            tokens, _ = TokenService._issue(user, source_ip, db)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.debug("Token pair issued", extra={"user_id": user.id, "client_ip": source_ip})
        return tokens

    @staticmethod
    def verify(token: str, expected_type: str, cache) -> dict:
        """
        Validates signature, expiry and type tag, then checks the blacklist.

        Every failure raises the same InvalidCredentialError; the reason
        is only logged.

        Returns:
            The decoded claims
        """
        if not token:
            raise TokenService._reject("missing")

        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM]
            )
        except ExpiredSignatureError:
            raise TokenService._reject("expired", expected_type=expected_type)
        except JWTError:
            raise TokenService._reject("bad_signature_or_format", expected_type=expected_type)

        if payload.get("type") != expected_type:
            raise TokenService._reject("wrong_type", expected_type=expected_type)

        if not payload.get("sub"):
            raise TokenService._reject("missing_subject", expected_type=expected_type)

        if cache.exists(blacklist_key(token)):
            raise TokenService._reject("blacklisted", user_id=payload["sub"])

        return payload

    @staticmethod
    def rotate(refresh_token: str, source_ip: str | None, db: Session, cache):
        """
        Exchanges a refresh token for a brand-new token pair.

        The old record is consumed with a conditional update on
        status == ACTIVE, so when the same token is presented concurrently
        exactly one caller wins; the others see "not active".
        Revocation of the old record and creation of the new one are
        committed together or not at all.

        Raises:
            InvalidCredentialError: token invalid, unknown, revoked, rotated or expired
        """
        payload = TokenService.verify(refresh_token, REFRESH, cache)
        user_id = payload["sub"]

        record = db.query(RefreshToken).filter(
            RefreshToken.token_hash == hash_token(refresh_token)
        ).one_or_none()

        if record is None or record.user_id != user_id:
            raise TokenService._reject("unknown_refresh_token", user_id=user_id)

        if not record.is_active:
            if record.status == RefreshTokenStatus.ROTATED.value:
                logger.warning(
                    "Refresh token reuse detected",
                    extra={"user_id": user_id, "refresh_token_id": record.id, "client_ip": source_ip}
                )
            raise TokenService._reject("not_active", user_id=user_id, status=record.status)

        user = db.query(User).filter(User.id == user_id).one_or_none()
        if user is None or not user.is_active or user.is_locked():
            raise TokenService._reject("account_unavailable", user_id=user_id)

        try:
            consumed = db.query(RefreshToken).filter(
                RefreshToken.id == record.id,
                RefreshToken.status == RefreshTokenStatus.ACTIVE.value
            ).update(
                {
                    RefreshToken.status: RefreshTokenStatus.ROTATED.value,
                    RefreshToken.revoked_at: datetime.now(timezone.utc),
                    RefreshToken.revoked_by_ip: source_ip
                },
                synchronize_session=False
            )

            if consumed != 1:
                db.rollback()
                raise TokenService._reject("lost_rotation_race", user_id=user_id)

            tokens, successor = TokenService._issue(user, source_ip, db)

            db.query(RefreshToken).filter(RefreshToken.id == record.id).update(
                {RefreshToken.replaced_by_id: successor.id},
                synchronize_session=False
            )
            db.commit()
        except InvalidCredentialError:
            raise
        except Exception:
            db.rollback()
            raise

        logger.info(
            "Refresh token rotated",
            extra={"user_id": user_id, "refresh_token_id": record.id, "replaced_by_id": successor.id}
        )
        return tokens

    @staticmethod
    def revoke(token: str, token_type: str, db: Session, cache, source_ip: str | None = None):
        """
        Revokes a token. Idempotent.

        The token is blacklisted for the rest of its lifetime (nothing to do
        once it has expired). Refresh tokens also get their record revoked.
        A token that does not carry a valid signature is ignored.
        """
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
                options={"verify_exp": False}
            )
        except JWTError:
            logger.info("Revocation skipped - token is not ours", extra={"token_type": token_type})
            return

        remaining = int(payload.get("exp", 0) - datetime.now(timezone.utc).timestamp())
        if remaining > 0:
            cache.set(blacklist_key(token), "1", remaining)

        if token_type == REFRESH:
            db.query(RefreshToken).filter(
                RefreshToken.token_hash == hash_token(token),
                RefreshToken.status == RefreshTokenStatus.ACTIVE.value
            ).update(
                {
                    RefreshToken.status: RefreshTokenStatus.REVOKED.value,
                    RefreshToken.revoked_at: datetime.now(timezone.utc),
                    RefreshToken.revoked_by_ip: source_ip
                },
                synchronize_session=False
            )
            db.commit()

        logger.info(
            "Token revoked",
            extra={"user_id": payload.get("sub"), "token_type": token_type}
        )

    @staticmethod
    def revoke_all_for_user(user_id: str, db: Session, commit: bool = True) -> int:
        """
        Revokes every active refresh token of a user (logout from all devices).
        Already revoked or rotated records are left untouched.

        Args:
            commit: False when the caller commits as part of a larger transaction

        Returns:
            Number of records revoked
        """
        count = db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.status == RefreshTokenStatus.ACTIVE.value
        ).update(
            {
                RefreshToken.status: RefreshTokenStatus.REVOKED.value,
                RefreshToken.revoked_at: datetime.now(timezone.utc)
            },
            synchronize_session=False
        )
        if commit:
            db.commit()

        logger.info("All refresh tokens revoked", extra={"user_id": user_id, "count": count})
        return count

    @staticmethod
    def purge_expired(db: Session) -> int:
        """Deletes refresh token records past their expiry. Meant for a periodic job."""
        now = datetime.now(timezone.utc)
        # Successor pointers into the purged rows would dangle otherwise
        expired_ids = select(RefreshToken.id).where(RefreshToken.expires_at <= now)
        db.query(RefreshToken).filter(
            RefreshToken.replaced_by_id.in_(expired_ids)
        ).update({RefreshToken.replaced_by_id: None}, synchronize_session=False)

        count = db.query(RefreshToken).filter(
            RefreshToken.expires_at <= now
        ).delete(synchronize_session=False)
        db.commit()

        logger.info("Expired refresh tokens purged", extra={"count": count})
        return count
