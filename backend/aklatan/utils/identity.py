"""Identity provider clients used for staff invitations and accounts.

Two providers are supported:

- `LocalIdentityProvider` keeps invitations in the application database
  and lets invited staff set a password (hashed by the auth service).
- `ClerkIdentityProvider` talks to the Clerk Backend API over HTTPS and
  verifies Clerk session tokens against the instance JWKS.

Both expose the same small surface so `UserService` does not care
which one is configured.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import jwt
import requests
from sqlmodel import Session, select

from ..config import settings

_LOGGER = logging.getLogger("aklatan.identity")


class IdentityProviderError(Exception):
    """Raised when the identity provider rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        return self.status_code == 404 or "not found" in str(self).lower()


def _iso(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        # Clerk timestamps are epoch milliseconds
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).isoformat()
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class LocalIdentityProvider:
    name = "local"

    def __init__(self, session: Session):
        self.session = session

    def create_invitation(self, email: str, public_metadata: dict, redirect_url: str) -> dict:
        from .. import models
        inv = models.Invitation(
            id=uuid.uuid4().hex,
            email=email,
            public_metadata=dict(public_metadata),
            redirect_url=redirect_url,
        )
        self.session.add(inv)
        self.session.commit()
        self.session.refresh(inv)
        _LOGGER.info("local invitation created for %s", email)
        return self._to_dict(inv)

    def list_invitations(self, status: Optional[str] = None) -> List[dict]:
        from .. import models
        stmt = select(models.Invitation).order_by(models.Invitation.created_at.desc())
        if status:
            stmt = stmt.where(models.Invitation.status == status)
        return [self._to_dict(i) for i in self.session.exec(stmt).all()]

    def revoke_invitation(self, invitation_id: str) -> dict:
        from .. import models
        inv = self.session.get(models.Invitation, invitation_id)
        if not inv:
            raise IdentityProviderError("invitation not found", status_code=404)
        inv.status = "revoked"
        inv.updated_at = datetime.now(timezone.utc)
        self.session.add(inv)
        self.session.commit()
        return self._to_dict(inv)

    def accept_invitation(self, invitation_id: str) -> dict:
        from .. import models
        inv = self.session.get(models.Invitation, invitation_id)
        if not inv or inv.status != "pending":
            raise IdentityProviderError("invitation not found or no longer pending", status_code=404)
        inv.status = "accepted"
        inv.updated_at = datetime.now(timezone.utc)
        self.session.add(inv)
        self.session.commit()
        return self._to_dict(inv)

    def delete_user(self, external_id: str) -> None:
        # local accounts live only in the user table
        return None

    def get_user_emails(self, external_id: str) -> List[str]:
        return []

    def _to_dict(self, inv) -> dict:
        return {
            "id": inv.id,
            "email_address": inv.email,
            "status": inv.status,
            "revoked": inv.status == "revoked",
            "public_metadata": inv.public_metadata or {},
            "url": inv.redirect_url,
            "created_at": _iso(inv.created_at),
            "updated_at": _iso(inv.updated_at),
        }


class ClerkIdentityProvider:
    name = "clerk"

    def __init__(self, secret_key: str = None, api_url: str = None, timeout: float = 15.0):
        self.secret_key = secret_key if secret_key is not None else settings.CLERK_SECRET_KEY
        self.api_url = (api_url if api_url is not None else settings.CLERK_API_URL).rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs):
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        try:
            resp = requests.request(method, f"{self.api_url}{path}", headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            _LOGGER.exception("clerk request failed %s %s", method, path)
            raise IdentityProviderError(f"identity provider unreachable: {exc}") from exc
        if resp.status_code >= 400:
            message = resp.text[:300]
            try:
                errors = resp.json().get("errors") or []
                if errors:
                    message = errors[0].get("long_message") or errors[0].get("message") or message
            except ValueError:
                pass
            raise IdentityProviderError(message, status_code=resp.status_code)
        return resp.json() if resp.content else {}

    def create_invitation(self, email: str, public_metadata: dict, redirect_url: str) -> dict:
        data = self._request(
            "POST",
            "/invitations",
            json={"email_address": email, "public_metadata": public_metadata, "redirect_url": redirect_url},
        )
        return self._to_dict(data)

    def list_invitations(self, status: Optional[str] = None) -> List[dict]:
        params = {"status": status} if status else None
        data = self._request("GET", "/invitations", params=params)
        items = data.get("data", []) if isinstance(data, dict) else data
        return [self._to_dict(i) for i in items]

    def revoke_invitation(self, invitation_id: str) -> dict:
        return self._to_dict(self._request("POST", f"/invitations/{invitation_id}/revoke"))

    def accept_invitation(self, invitation_id: str) -> dict:
        raise IdentityProviderError("invitations are accepted through the Clerk sign-up flow", status_code=400)

    def delete_user(self, external_id: str) -> None:
        self._request("DELETE", f"/users/{external_id}")

    def get_user_emails(self, external_id: str) -> List[str]:
        """Addresses registered on the Clerk account `external_id`."""
        data = self._request("GET", f"/users/{external_id}")
        return [e.get("email_address", "").lower() for e in data.get("email_addresses") or []]

    def _to_dict(self, data: dict) -> dict:
        return {
            "id": data.get("id"),
            "email_address": data.get("email_address"),
            "status": data.get("status"),
            "revoked": bool(data.get("revoked", data.get("status") == "revoked")),
            "public_metadata": data.get("public_metadata") or {},
            "url": data.get("url"),
            "created_at": _iso(data.get("created_at")),
            "updated_at": _iso(data.get("updated_at")),
        }


_jwks_client: Optional[jwt.PyJWKClient] = None


def verify_clerk_session_token(token: str) -> dict:
    """Verify a Clerk session JWT (RS256) and return its claims."""
    global _jwks_client
    if not settings.CLERK_JWKS_URL:
        raise IdentityProviderError("CLERK_JWKS_URL is not configured")
    if _jwks_client is None:
        _jwks_client = jwt.PyJWKClient(settings.CLERK_JWKS_URL)
    signing_key = _jwks_client.get_signing_key_from_jwt(token)
    return jwt.decode(token, signing_key.key, algorithms=["RS256"], options={"verify_aud": False})


def get_identity_provider(session: Session):
    if settings.AUTH_PROVIDER == "clerk":
        return ClerkIdentityProvider()
    return LocalIdentityProvider(session)
