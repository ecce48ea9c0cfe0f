import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import requests
from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

import config

logger = logging.getLogger(__name__)

FIREBASE_JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
JWKS_TTL_SECONDS = 3600


class TokenError(Exception):
    pass


Verifier = Callable[[str], Dict]


# ---------- Issuing ----------

def create_access_token(email: str, user_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=config.JWT_EXPIRES_MINUTES)
    payload = {"email": email, "id": user_id, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


# ---------- Verification strategies ----------

def verify_local(token: str) -> Dict:
    """Tokens signed by this service with the shared secret."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        raise TokenError(f"local: {e}") from e
    return {"email": payload.get("email"), "id": payload.get("id")}


class FirebaseVerifier:
    """
    Firebase ID tokens, checked against Google's published signing keys.

    The key set is fetched lazily and reused for an hour.
    """

    def __init__(self, project_id: str, jwks_url: str = FIREBASE_JWKS_URL):
        self.project_id = project_id
        self.jwks_url = jwks_url
        self._jwks: Optional[dict] = None
        self._fetched_at = 0.0

    def signing_keys(self) -> dict:
        if self._jwks is None or time.monotonic() - self._fetched_at > JWKS_TTL_SECONDS:
            r = requests.get(self.jwks_url, timeout=10)
            r.raise_for_status()
            self._jwks = r.json()
            self._fetched_at = time.monotonic()
        return self._jwks

    def __call__(self, token: str) -> Dict:
        try:
            payload = jwt.decode(
                token,
                self.signing_keys(),
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=f"https://securetoken.google.com/{self.project_id}",
            )
        except (JWTError, requests.RequestException) as e:
            raise TokenError(f"firebase: {e}") from e
        return {"email": payload.get("email"), "id": payload.get("user_id") or payload.get("sub")}


def build_verifiers() -> List[Verifier]:
    verifiers: List[Verifier] = [verify_local]
    if config.FIREBASE_PROJECT_ID:
        verifiers.append(FirebaseVerifier(config.FIREBASE_PROJECT_ID))
    return verifiers


_verifiers = build_verifiers()


def get_verifiers() -> List[Verifier]:
    return _verifiers


def verify_token(token: str, verifiers: List[Verifier]) -> Dict:
    """Return the claims from the first strategy that accepts the token."""
    errors = []
    for verify in verifiers:
        try:
            claims = verify(token)
        except TokenError as e:
            errors.append(str(e))
            continue
        if not claims.get("email"):
            errors.append("token has no email claim")
            continue
        return claims
    raise TokenError("; ".join(errors) or "no verifier configured")


# ---------- Dependency ----------

def get_current_user(
    authorization: Optional[str] = Header(None),
    verifiers: List[Verifier] = Depends(get_verifiers),
) -> Dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(401, "Unauthorized: missing token")
    token = authorization[len("bearer "):].strip()
    if not token:
        raise HTTPException(401, "Unauthorized: missing token")
    try:
        return verify_token(token, verifiers)
    except TokenError as e:
        logger.warning("Token rejected: %s", e)
        raise HTTPException(403, "Forbidden: invalid token")
