from __future__ import annotations

import time
from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class ClientCredentials:
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenSet":
        if not isinstance(payload, dict):
            raise ValueError("Token response must be a JSON object.")

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")

        if not isinstance(access_token, str) or not access_token:
            raise ValueError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("Token response refresh_token must be a string.")

        return cls(access_token=access_token, refresh_token=refresh_token or None)

    def to_payload(self) -> dict:
        return {"access_token": self.access_token, "refresh_token": self.refresh_token}

    def rotated(self, previous_refresh_token: str | None) -> "TokenSet":
        """Keep the previous refresh token when the provider did not issue a new one."""
        if self.refresh_token:
            return self
        return replace(self, refresh_token=previous_refresh_token)


@dataclass(frozen=True)
class StoredTokens:
    tokens: TokenSet
    version: int
    refresh_owner: str | None = None
    refresh_expires_at: float | None = None

    def refresh_in_progress(self, now: float | None = None) -> bool:
        if self.refresh_owner is None or self.refresh_expires_at is None:
            return False
        current = time.time() if now is None else now
        return current < self.refresh_expires_at

    def to_payload(self) -> dict:
        return {
            **self.tokens.to_payload(),
            "version": self.version,
            "refresh_owner": self.refresh_owner,
            "refresh_expires_at": self.refresh_expires_at,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "StoredTokens":
        return cls(
            tokens=TokenSet.from_payload(payload),
            version=int(payload.get("version", 0)),
            refresh_owner=payload.get("refresh_owner"),
            refresh_expires_at=payload.get("refresh_expires_at"),
        )


@dataclass
class AuthorizationState:
    state: str
    redirect_uri: str
    pkce_verifier: str | None = None
    pkce_challenge: str | None = None
    created_at: float = field(default_factory=time.time)
