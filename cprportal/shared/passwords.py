import logging

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext
from passlib.handlers import bcrypt as passlib_bcrypt

logging.getLogger("passlib.handlers.bcrypt").setLevel(logging.ERROR)

# newer bcrypt releases reject the 255-byte probe passlib uses to detect the
# wraparound bug; bcrypt_sha256 never hands bcrypt more than 72 bytes
passlib_bcrypt._BcryptBackend._workrounds_initialized = True

pwd_ctx = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
)

MIN_PASSWORD_LENGTH = 8
RESET_SALT = "pwd-reset"
RESET_MAX_AGE = 3600


def hash_password(plain: str) -> str:
    """Return bcrypt_sha256 hash for plain password."""
    return pwd_ctx.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify plain password against hash."""
    if not plain or not hashed:
        return False
    try:
        return pwd_ctx.verify(plain, hashed)
    except ValueError:
        return False


def password_problem(plain: str | None) -> str | None:
    if not plain or len(plain) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
    return None


def make_reset_token(secret_key: str, email: str) -> str:
    serializer = URLSafeTimedSerializer(secret_key)
    return serializer.dumps({"email": email}, salt=RESET_SALT)


def read_reset_token(secret_key: str, token: str) -> str | None:
    """Return the email encoded in a reset token, or None if invalid/expired."""
    serializer = URLSafeTimedSerializer(secret_key)
    try:
        data = serializer.loads(token, salt=RESET_SALT, max_age=RESET_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(data, dict):
        return None
    return data.get("email")
