"""
GitHub App authentication.

Turns the long-lived app credentials (app id, private key, installation id)
into a short-lived installation access token:
1. Validate the identity locally
2. Sign an RS256 JWT asserting the app identity
3. Exchange it for an installation token

Tokens live only as long as one sync run and are never cached.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from .errors import AuthenticationError, ConfigurationError, DecodeError
from .github_api import GitHubAPI

logger = logging.getLogger(__name__)

# Backdated to tolerate clock drift between us and GitHub.
JWT_CLOCK_SKEW = timedelta(seconds=60)
# GitHub rejects app JWTs valid for more than ten minutes.
JWT_LIFETIME = timedelta(minutes=9)

_PEM_BEGIN = re.compile(r"-----BEGIN (?:RSA )?PRIVATE KEY-----")
_PEM_END = re.compile(r"-----END (?:RSA )?PRIVATE KEY-----")


def normalize_private_key(value: str) -> str:
    """
    Normalize PEM text taken from the environment.
    
    Escaped ``\\n`` sequences and CRLF/CR line endings become LF, and
    surrounding whitespace is dropped.
    """
    return (
        value.replace("\\n", "\n")
        .replace("\r\n", "\n")
        .replace("\r", "\n")
        .strip()
    )


def is_well_formed_private_key(key: str) -> bool:
    """Check for PEM begin/end markers with a body between them."""
    begin = _PEM_BEGIN.search(key)
    end = _PEM_END.search(key)
    if not begin or not end or end.start() <= begin.end():
        return False
    
    return bool(key[begin.end():end.start()].strip())


@dataclass(frozen=True)
class AppIdentity:
    """Long-lived GitHub App credentials plus the installation to act as."""
    
    app_id: str
    private_key: str = field(repr=False)
    installation_id: str
    repositories: tuple[str, ...] = ()
    
    def validate(self) -> None:
        """
        Check the identity without touching the network.
        
        Raises:
            ConfigurationError: Naming every absent or malformed value.
        """
        problems = []
        
        if not self.app_id or not str(self.app_id).strip():
            problems.append("GitHub App id is not set")
        
        if not self.private_key or not self.private_key.strip():
            problems.append("GitHub App private key is not set")
        elif not is_well_formed_private_key(self.private_key):
            problems.append(
                "GitHub App private key is malformed: expected PEM "
                "'-----BEGIN ... PRIVATE KEY-----' / '-----END ... PRIVATE KEY-----' markers"
            )
        
        installation_id = str(self.installation_id or "").strip()
        if not installation_id:
            problems.append("GitHub App installation id is not set")
        elif not installation_id.isdigit():
            problems.append(
                f"GitHub App installation id must be numeric, got {installation_id!r}"
            )
        
        if problems:
            raise ConfigurationError(
                "GitHub sync is not configured: " + "; ".join(problems),
                details={"problems": problems},
            )


@dataclass(frozen=True)
class Credential:
    """An installation access token and the instant it stops working."""
    
    token: str = field(repr=False)
    expires_at: datetime
    
    def is_expired(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        """True if the token is unusable at ``now`` (plus a safety margin)."""
        return now + margin >= self.expires_at
    
    def remaining(self, now: datetime) -> timedelta:
        """Validity left at ``now``."""
        return self.expires_at - now


class GitHubAppAuth:
    """
    Issues installation access tokens for a GitHub App.
    
    The clock is injectable so tests can pin "now".
    """
    
    def __init__(
        self,
        api: GitHubAPI,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the credential provider.
        
        Args:
            api: API wrapper used for the token exchange.
            clock: Returns the current instant. Defaults to UTC now.
        """
        self.api = api
        self.clock = clock or (lambda: datetime.now(timezone.utc))
    
    def create_app_jwt(self, identity: AppIdentity, now: Optional[datetime] = None) -> str:
        """
        Sign the app assertion.
        
        Args:
            identity: Validated app identity.
            now: Signing instant; read from the clock if omitted.
            
        Returns:
            Encoded RS256 JWT.
            
        Raises:
            ConfigurationError: If the key cannot be used for signing.
        """
        now = now or self.clock()
        payload = {
            "iat": int((now - JWT_CLOCK_SKEW).timestamp()),
            "exp": int((now + JWT_LIFETIME).timestamp()),
            "iss": str(identity.app_id).strip(),
        }
        
        try:
            return jwt.encode(payload, identity.private_key, algorithm="RS256")
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise ConfigurationError(
                f"GitHub App private key could not be used for signing: {e}"
            ) from e
    
    def issue(self, identity: AppIdentity) -> Credential:
        """
        Exchange the app identity for an installation access token.
        
        Args:
            identity: App credentials and target installation.
            
        Returns:
            A fresh Credential.
            
        Raises:
            ConfigurationError: Identity absent or malformed (no request is made).
            AuthenticationError: GitHub rejected the assertion.
            TransientNetworkError: Timeout, connection failure or 5xx.
            DecodeError: Unexpected response shape.
        """
        identity.validate()
        
        assertion = self.create_app_jwt(identity)
        installation_id = str(identity.installation_id).strip()
        body = {"repositories": list(identity.repositories)} if identity.repositories else None
        
        logger.debug("Requesting installation token for installation %s", installation_id)
        response = self.api.request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            token=assertion,
            json=body,
        )
        
        self.api.raise_transient(response, "Installation token exchange")
        
        if not response.ok:
            logger.error(
                "Installation token exchange rejected (HTTP %s): %s",
                response.status_code, response.text,
            )
            raise AuthenticationError(
                f"GitHub rejected the app credentials (HTTP {response.status_code}): {response.text}",
                details={"status_code": response.status_code, "body": response.text},
            )
        
        data = self.api.decode_json(response)
        return self._parse_credential(data, response.text)
    
    @staticmethod
    def _parse_credential(data: object, raw: str) -> Credential:
        if not isinstance(data, dict):
            raise DecodeError("Installation token response is not an object", payload=raw)
        
        token = data.get("token")
        expires_at = data.get("expires_at")
        if not isinstance(token, str) or not token or not isinstance(expires_at, str):
            raise DecodeError(
                "Installation token response lacks 'token' or 'expires_at'",
                payload=raw,
            )
        
        try:
            expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
        except ValueError as e:
            raise DecodeError(
                f"Installation token expiry {expires_at!r} is not ISO 8601",
                payload=raw,
            ) from e
        
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        
        return Credential(token=token, expires_at=expiry)
