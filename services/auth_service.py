from datetime import datetime, timezone, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from core.config import settings
from core.exceptions import BadRequestError, ConflictError, UnauthorizedError
from core.queue import (dispatch_notification, SEND_VERIFICATION_EMAIL,
    SEND_PASSWORD_RESET_EMAIL, SEND_WELCOME_EMAIL)
from models.users import User
from models.external_identities import ExternalIdentity
from schemas.auth_schemas import CreateUserRequest
from services.identity_providers import ExternalIdentityAssertion
from services.token_service import TokenService
from utils.hashing import verify_password, get_password_hash, get_unusable_password_hash
from utils.verification import generate_single_use_secret, hash_secret, get_expiry_time
from utils.logger import get_logger

logger = get_logger(__name__)

# Same message for unknown email, wrong password, locked and deactivated
# accounts, so a login response never tells which one it was.
LOGIN_FAILED = "Incorrect email or password"


def normalize_email(email: str) -> str:
    return email.lower().strip()


class AuthService:
    """
    Credential state machine of a user account: password, lockout,
    email verification and password reset.
    """

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> User | None:
        return db.query(User).filter(User.email == normalize_email(email)).one_or_none()

    @staticmethod
    def get_active_user_by_id(db: Session, user_id: str) -> User | None:
        return db.query(User).filter(User.id == user_id, User.is_active == True).one_or_none()

    @staticmethod
    def register(request: CreateUserRequest, db: Session, queue) -> User:
        """
        Creates a new unverified user and queues the verification email.

        Flow:
        1. Reject a taken email with Conflict
        2. Generate the single-use verification secret (only its digest is stored)
        3. Create the user
        4. Queue the verification email carrying the raw secret
        """
        email = normalize_email(request.email)

        if AuthService.get_user_by_email(db, email):
            logger.warning(
                "Registration attempt with existing email",
                extra={"email": email}
            )
            raise ConflictError("Email already registered")

        raw_secret, digest = generate_single_use_secret()

        model = User(
            email=email,
            name=request.name,
            hashed_password=get_password_hash(request.password),
            is_email_verified=False,
            email_verification_token_hash=digest,
            email_verification_expires_at=get_expiry_time(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)
        )

        db.add(model)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race against a concurrent registration of the same email
            db.rollback()
            logger.warning("Concurrent registration with same email", extra={"email": email})
            raise ConflictError("Email already registered")

        db.refresh(model)

        dispatch_notification(queue, SEND_VERIFICATION_EMAIL, {
            "email": model.email,
            "name": model.name,
            "token": raw_secret
        })

        logger.info("User registered", extra={"user_id": model.id})
        return model

    @staticmethod
    def _register_failed_attempt(user: User, db: Session) -> None:
        """
        Counts a password mismatch and locks the account once the counter
        reaches LOGIN_MAX_FAILED_ATTEMPTS.
        """
        if user.lock_until is not None and not user.is_locked():
            # The previous lock has elapsed, start a fresh count
            user.failed_login_attempts = 1
            user.lock_until = None
        else:
            # Evaluated by the database, concurrent failures are all counted
            user.failed_login_attempts = User.failed_login_attempts + 1
        db.commit()
        db.refresh(user)

        if user.failed_login_attempts >= settings.LOGIN_MAX_FAILED_ATTEMPTS and not user.is_locked():
            user.lock_until = datetime.now(timezone.utc) + timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)
            db.commit()
            logger.warning(
                "Account locked after repeated failed logins",
                extra={"user_id": user.id, "failed_login_attempts": user.failed_login_attempts}
            )

    @staticmethod
    def login(email: str, password: str, source_ip: str | None, db: Session):
        """
        Authenticates a user and issues a token pair.

        Order matters: password (counting failures), then lock, then active flag.
        A locked or deactivated account is refused even with the right password.
        Unverified accounts may log in.

        Returns:
            Tuple of (user, tokens)
        """
        user = AuthService.get_user_by_email(db, email)

        if not user:
            logger.warning(
                "Login failed - user not found",
                extra={"email": normalize_email(email), "client_ip": source_ip}
            )
            raise UnauthorizedError(LOGIN_FAILED)

        if not verify_password(password, user.hashed_password):
            AuthService._register_failed_attempt(user, db)
            logger.warning(
                "Login failed - invalid password",
                extra={"user_id": user.id, "client_ip": source_ip}
            )
            raise UnauthorizedError(LOGIN_FAILED)

        if user.is_locked():
            logger.warning(
                "Login failed - account locked",
                extra={"user_id": user.id, "client_ip": source_ip}
            )
            raise UnauthorizedError(LOGIN_FAILED)

        if not user.is_active:
            logger.warning(
                "Login failed - inactive account",
                extra={"user_id": user.id, "client_ip": source_ip}
            )
            raise UnauthorizedError(LOGIN_FAILED)

        user.failed_login_attempts = 0
        user.lock_until = None
        user.last_login = datetime.now(timezone.utc)
        db.commit()

        tokens = TokenService.issue_tokens(user, source_ip, db)

        logger.info("User logged in", extra={"user_id": user.id, "client_ip": source_ip})
        return user, tokens

    @staticmethod
    def _consume_secret(db: Session, user_id: str, digest_column, expires_column, digest: str,
                        values: dict) -> bool:
        """
        Clears a single-use secret and applies `values` in one conditional
        UPDATE. Only a row still holding the unexpired digest matches, so of
        two requests carrying the same secret exactly one gets True.
        Does not commit.
        """
        consumed = db.query(User).filter(
            User.id == user_id,
            digest_column == digest,
            expires_column > datetime.now(timezone.utc)
        ).update(
            {digest_column: None, expires_column: None, **values},
            synchronize_session=False
        )
        return consumed == 1

    @staticmethod
    def verify_email(raw_token: str, db: Session, queue) -> User:
        """
        Consumes an email verification secret.
        The secret is cleared on success, so a replay fails.
        """
        digest = hash_secret(raw_token)
        user = db.query(User).filter(
            User.email_verification_token_hash == digest,
            User.email_verification_expires_at > datetime.now(timezone.utc)
        ).first()

        if not user:
            logger.warning("Email verification failed - invalid or expired token")
            raise BadRequestError("Invalid or expired verification token")

        try:
            consumed = AuthService._consume_secret(
                db, user.id,
                User.email_verification_token_hash, User.email_verification_expires_at,
                digest, {User.is_email_verified: True}
            )
            if consumed:
                db.commit()
        except Exception:
            db.rollback()
            raise

        if not consumed:
            db.rollback()
            logger.warning("Email verification failed - token already used", extra={"user_id": user.id})
            raise BadRequestError("Invalid or expired verification token")

        db.refresh(user)

        dispatch_notification(queue, SEND_WELCOME_EMAIL, {
            "email": user.email,
            "name": user.name
        })

        logger.info("Email verified", extra={"user_id": user.id})
        return user

    @staticmethod
    def forgot_password(email: str, db: Session, queue) -> None:
        """
        Issues a password reset secret. Unknown emails are a silent no-op,
        the caller always gets the same answer.
        """
        user = AuthService.get_user_by_email(db, email)

        if not user:
            logger.info("Password reset requested for non-existent email")
            return

        raw_secret, digest = generate_single_use_secret()
        user.password_reset_token_hash = digest
        user.password_reset_expires_at = get_expiry_time(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        db.commit()

        dispatch_notification(queue, SEND_PASSWORD_RESET_EMAIL, {
            "email": user.email,
            "name": user.name,
            "token": raw_secret
        })

        logger.info("Password reset requested", extra={"user_id": user.id})

    @staticmethod
    def reset_password(raw_token: str, new_password: str, db: Session) -> User:
        """
        Consumes a reset secret, replaces the password and revokes every
        active refresh token of the user, all in one transaction.
        """
        digest = hash_secret(raw_token)
        user = db.query(User).filter(
            User.password_reset_token_hash == digest,
            User.password_reset_expires_at > datetime.now(timezone.utc)
        ).first()

        if not user:
            logger.warning("Password reset failed - invalid or expired token")
            raise BadRequestError("Invalid or expired reset token")

        hashed_password = get_password_hash(new_password)

        try:
            consumed = AuthService._consume_secret(
                db, user.id,
                User.password_reset_token_hash, User.password_reset_expires_at,
                digest, {User.hashed_password: hashed_password}
            )
            if consumed:
                TokenService.revoke_all_for_user(user.id, db, commit=False)
                db.commit()
        except Exception:
            db.rollback()
            raise

        if not consumed:
            db.rollback()
            logger.warning("Password reset failed - token already used", extra={"user_id": user.id})
            raise BadRequestError("Invalid or expired reset token")

        db.refresh(user)

        logger.info("Password reset", extra={"user_id": user.id})
        return user

    @staticmethod
    def change_password(user_id: str, old_password: str, new_password: str, db: Session) -> User:
        """
        Replaces the password after checking the current one and revokes
        every active refresh token of the user, in one transaction.
        """
        user = AuthService.get_active_user_by_id(db, user_id)

        if not user or not verify_password(old_password, user.hashed_password):
            logger.warning("Password change failed - incorrect password", extra={"user_id": user_id})
            raise UnauthorizedError("Incorrect password")

        try:
            user.hashed_password = get_password_hash(new_password)
            TokenService.revoke_all_for_user(user.id, db, commit=False)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Password changed", extra={"user_id": user.id})
        return user

    @staticmethod
    def set_active(user: User, is_active: bool, db: Session) -> User:
        """
        Activates or deactivates an account. Deactivation also ends every
        session; accounts are never deleted.
        """
        try:
            user.is_active = is_active
            if not is_active:
                TokenService.revoke_all_for_user(user.id, db, commit=False)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("User status changed", extra={"user_id": user.id, "is_active": is_active})
        return user

    @staticmethod
    def deactivate_self(user_id: str, password: str, db: Session) -> User:
        user = AuthService.get_active_user_by_id(db, user_id)

        if not user or not verify_password(password, user.hashed_password):
            raise UnauthorizedError("Incorrect password")

        return AuthService.set_active(user, False, db)

    @staticmethod
    def _resolve_federated_user(identity: ExternalIdentityAssertion, db: Session) -> User:
        link = db.query(ExternalIdentity).filter(
            ExternalIdentity.provider == identity.provider,
            ExternalIdentity.subject_id == identity.subject_id
        ).one_or_none()

        if link:
            return link.user

        email = normalize_email(identity.email)
        user = AuthService.get_user_by_email(db, email)

        if user:
            # The provider vouched for this address
            user.is_email_verified = True
            logger.info(
                "Linking external identity to existing user",
                extra={"user_id": user.id, "provider": identity.provider}
            )
        else:
            user = User(
                email=email,
                name=identity.display_name or email.split("@")[0],
                hashed_password=get_unusable_password_hash(),
                is_email_verified=True
            )
            db.add(user)
            db.flush()
            logger.info(
                "User created from external identity",
                extra={"user_id": user.id, "provider": identity.provider}
            )

        db.add(ExternalIdentity(
            user_id=user.id,
            provider=identity.provider,
            subject_id=identity.subject_id,
            email=email
        ))

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "Concurrent federated sign-in for same identity",
                extra={"provider": identity.provider}
            )
            raise ConflictError("External identity is already being linked, please retry")

        db.refresh(user)
        return user

    @staticmethod
    def external_sign_in(identity: ExternalIdentityAssertion, source_ip: str | None, db: Session):
        """
        Signs in with an externally verified identity, creating or linking
        the account on first use. Lockout and deactivation still apply.

        Returns:
            Tuple of (user, tokens)
        """
        user = AuthService._resolve_federated_user(identity, db)

        if user.is_locked() or not user.is_active:
            logger.warning(
                "External sign-in refused - account locked or inactive",
                extra={"user_id": user.id, "provider": identity.provider}
            )
            raise UnauthorizedError(LOGIN_FAILED)

        user.last_login = datetime.now(timezone.utc)
        db.commit()

        tokens = TokenService.issue_tokens(user, source_ip, db)

        logger.info(
            "User signed in with external identity",
            extra={"user_id": user.id, "provider": identity.provider}
        )
        return user, tokens
