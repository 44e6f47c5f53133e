"""Password hashing.

Credentials are stored through passlib's CryptContext so the scheme can be
changed later without touching callers; hashes of deprecated schemes are
still verified.
"""

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


# hash_password: Returns a one-way hash of a plaintext password.
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


# ensure_hashed: Hashes a stored credential unless it already is a known hash.
def ensure_hashed(stored: str) -> str:
    if stored and pwd_context.identify(stored, required=False):
        return stored
    return hash_password(stored or "")


# verify_password: Checks a plaintext password against a stored hash.
def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # Unrecognized hash format
        return False
