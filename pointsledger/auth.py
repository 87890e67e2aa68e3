import logging
from abc import ABC, abstractmethod
from typing import Optional

import firebase_admin
from firebase_admin import auth

from .errors import InternalError

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityProvider(ABC):
    @abstractmethod
    def verify(self, token: str) -> Optional[str]:
        """Return the caller id for a token, or None if it is not valid."""


class StaticIdentityProvider(IdentityProvider):
    def __init__(self, tokens: Optional[dict[str, str]] = None):
        self.tokens = dict(tokens or {})

    def verify(self, token: str) -> Optional[str]:
        return self.tokens.get(token)


class FirebaseIdentityProvider(IdentityProvider):
    def __init__(self, app: Optional[firebase_admin.App] = None, check_revoked: bool = False):
        self.app = app
        self.check_revoked = check_revoked

    def verify(self, token: str) -> Optional[str]:
        try:
            decoded = auth.verify_id_token(token, app=self.app, check_revoked=self.check_revoked)
        except (auth.InvalidIdTokenError, auth.UserDisabledError, ValueError) as e:
            logger.warning("Rejected ID token: %s", e)
            return None
        except auth.CertificateFetchError as e:
            logger.error("Could not fetch token signing certificates: %s", e)
            raise InternalError("Unable to verify the caller's identity.") from e
        return decoded.get("uid")


def ensure_firebase_app() -> firebase_admin.App:
    # Honors FIRESTORE_EMULATOR_HOST / FIREBASE_AUTH_EMULATOR_HOST when set.
    if not firebase_admin._apps:
        return firebase_admin.initialize_app()
    return firebase_admin.get_app()
