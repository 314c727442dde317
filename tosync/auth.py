"""
Admin login and JWT tokens gating room creation

When TOSYNC_ADMIN_USERS is configured only holders of a valid admin token
may create rooms. Generate a password hash with:

    python -m tosync.auth <password>
"""
import sys
import time
from typing import Dict, Optional

import jwt
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TOKEN_ISSUER = "tosync"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_admin_user(username: str, password: str, admin_users: Dict[str, str]) -> bool:
    """Check a username/password pair against the configured bcrypt hashes"""
    hashed = admin_users.get(username)
    if not hashed or not password:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # Malformed hash in configuration
        return False


def mint_admin_token(identity: str, secret: str, ttl: int = 60 * 60) -> str:
    """
    Mint an admin token

    Args:
        identity: Admin username
        secret: HMAC signing key
        ttl: Lifetime in seconds

    Returns:
        JWT token string
    """
    now = int(time.time())
    payload = {
        "iss": TOKEN_ISSUER,
        "sub": identity,
        "nbf": now - 5,  # Not before (with 5s clock skew tolerance)
        "exp": now + ttl,
        "admin": True,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_admin_token(token: Optional[str], secret: str) -> Optional[str]:
    """Return the admin identity for a valid token, None otherwise"""
    if not token:
        return None
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"], issuer=TOKEN_ISSUER)
    except jwt.PyJWTError:
        return None
    if not claims.get("admin"):
        return None
    return claims.get("sub")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("Usage: python -m tosync.auth <password>")
        return 1
    hashed = hash_password(argv[0])
    print("\nPassword hash:")
    print(hashed)
    print("\nFor TOSYNC_ADMIN_USERS env var:")
    print('{"username": "%s"}' % hashed)
    print('\nReplace "username" with the actual username you want to use.')
    return 0


if __name__ == "__main__":
    sys.exit(main())
