"""
Configuration management for the event → GitHub sync.

Loads settings from environment variables (optionally from a .env file)
and provides structured configuration for all sync components.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .errors import ConfigurationError
from .github_api import DEFAULT_API_URL
from .github_auth import AppIdentity, normalize_private_key
from .github_store import DocumentLocation
from .markdown_renderer import RenderOptions

REQUIRED_VARIABLES = ("GITHUB_APP_ID", "GITHUB_INSTALLATION_ID")
DEFAULT_DOCUMENT_TITLE = "スクラムフェスマップ"
DEFAULT_DISPLAY_TIMEZONE = "Asia/Tokyo"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() == "true"


def _not_configured(variable: str, hint: str) -> ConfigurationError:
    return ConfigurationError(
        f"GitHub sync is not configured: {variable} environment variable is required.\n{hint}",
        details={"variable": variable},
    )


def build_render_options(title: str, display_timezone: str) -> RenderOptions:
    """RenderOptions for a document title and an IANA time zone name."""
    try:
        zone = ZoneInfo(display_timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(
            f"DISPLAY_TIMEZONE {display_timezone!r} is not a known time zone"
        ) from e
    
    return RenderOptions(title=title, timezone=zone)


def render_options_from_env(env_file: Optional[Path] = None) -> RenderOptions:
    """
    Rendering options from DOCUMENT_TITLE and DISPLAY_TIMEZONE alone.
    
    Previewing a document needs no GitHub credentials, so unlike
    ``Config.from_env`` nothing here is required.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()
    
    return build_render_options(
        os.getenv("DOCUMENT_TITLE") or DEFAULT_DOCUMENT_TITLE,
        os.getenv("DISPLAY_TIMEZONE") or DEFAULT_DISPLAY_TIMEZONE,
    )


@dataclass
class Config:
    """
    Central configuration for the sync.
    
    All secrets come from environment variables - never hardcoded.
    """
    
    # GitHub App credentials
    github_app_id: str
    github_private_key: str = field(repr=False)
    github_installation_id: str
    
    # Target document
    repository: str
    file_path: str = "all-events.md"
    branch: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    commit_message: Optional[str] = None
    
    # Rendering
    document_title: str = DEFAULT_DOCUMENT_TITLE
    display_timezone: str = DEFAULT_DISPLAY_TIMEZONE
    
    # Network
    http_timeout: float = 30.0
    authenticated_fetch: bool = False
    
    # Sync behavior
    debug: bool = False
    dry_run: bool = False
    force_sync: bool = False
    
    @property
    def location(self) -> DocumentLocation:
        """Where the document is mirrored."""
        return DocumentLocation.from_slug(self.repository, self.file_path, self.branch)
    
    @property
    def identity(self) -> AppIdentity:
        """GitHub App identity scoped to the target repository."""
        return AppIdentity(
            app_id=self.github_app_id,
            private_key=self.github_private_key,
            installation_id=self.github_installation_id,
            repositories=(self.location.repo,),
        )
    
    def render_options(self) -> RenderOptions:
        """Rendering options derived from this configuration."""
        return build_render_options(self.document_title, self.display_timezone)
    
    @staticmethod
    def missing_variables() -> list[str]:
        """
        Required variables absent from the environment.
        
        Lets callers hide the sync action on deployments that do not
        enable it, instead of waiting for a failure.
        """
        missing = [name for name in REQUIRED_VARIABLES if not os.getenv(name)]
        if not os.getenv("GITHUB_PRIVATE_KEY") and not os.getenv("GITHUB_PRIVATE_KEY_PATH"):
            missing.append("GITHUB_PRIVATE_KEY")
        if not os.getenv("GITHUB_REPOSITORY") and not (
            os.getenv("GITHUB_OWNER") and os.getenv("GITHUB_REPO")
        ):
            missing.append("GITHUB_REPOSITORY")
        return missing
    
    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Config":
        """
        Load configuration from environment variables.
        
        Args:
            env_file: Optional path to .env file. If not provided,
                     looks for .env in current directory.
        
        Returns:
            Configured Config instance.
            
        Raises:
            ConfigurationError: If required variables are missing or malformed.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()
        
        app_id = os.getenv("GITHUB_APP_ID", "").strip()
        if not app_id:
            raise _not_configured(
                "GITHUB_APP_ID",
                "Find it on the GitHub App's settings page.",
            )
        
        private_key = cls._load_private_key()
        
        installation_id = os.getenv("GITHUB_INSTALLATION_ID", "").strip()
        if not installation_id:
            raise _not_configured(
                "GITHUB_INSTALLATION_ID",
                "Install the GitHub App on the target repository and use the installation id.",
            )
        if not installation_id.isdigit():
            raise ConfigurationError(
                f"GITHUB_INSTALLATION_ID must be numeric, got {installation_id!r}"
            )
        
        repository = os.getenv("GITHUB_REPOSITORY", "").strip()
        if not repository:
            owner = os.getenv("GITHUB_OWNER", "").strip()
            repo = os.getenv("GITHUB_REPO", "").strip()
            if not owner or not repo:
                raise _not_configured(
                    "GITHUB_REPOSITORY",
                    "Set it to 'owner/repo' (or set GITHUB_OWNER and GITHUB_REPO).",
                )
            repository = f"{owner}/{repo}"
        
        timeout_str = os.getenv("HTTP_TIMEOUT", "30")
        try:
            http_timeout = float(timeout_str)
        except ValueError as e:
            raise ConfigurationError(
                f"HTTP_TIMEOUT must be a number of seconds, got {timeout_str!r}"
            ) from e
        if http_timeout <= 0:
            raise ConfigurationError(f"HTTP_TIMEOUT must be positive, got {timeout_str!r}")
        
        config = cls(
            github_app_id=app_id,
            github_private_key=private_key,
            github_installation_id=installation_id,
            repository=repository,
            file_path=os.getenv("GITHUB_FILE_PATH", "all-events.md").strip(),
            branch=os.getenv("GITHUB_BRANCH") or None,
            api_url=os.getenv("GITHUB_API_URL") or DEFAULT_API_URL,
            commit_message=os.getenv("SYNC_COMMIT_MESSAGE") or None,
            document_title=os.getenv("DOCUMENT_TITLE") or DEFAULT_DOCUMENT_TITLE,
            display_timezone=os.getenv("DISPLAY_TIMEZONE") or DEFAULT_DISPLAY_TIMEZONE,
            http_timeout=http_timeout,
            authenticated_fetch=_env_flag("SYNC_AUTHENTICATED_FETCH"),
            debug=_env_flag("DEBUG"),
            dry_run=_env_flag("DRY_RUN"),
            force_sync=_env_flag("FORCE_SYNC"),
        )
        
        # Fail now on malformed values rather than mid-sync.
        config.location
        config.render_options()
        
        return config
    
    @staticmethod
    def _load_private_key() -> str:
        """Private key from GITHUB_PRIVATE_KEY, else from GITHUB_PRIVATE_KEY_PATH."""
        inline = os.getenv("GITHUB_PRIVATE_KEY", "")
        if inline.strip():
            return normalize_private_key(inline)
        
        key_path = os.getenv("GITHUB_PRIVATE_KEY_PATH", "").strip()
        if not key_path:
            raise _not_configured(
                "GITHUB_PRIVATE_KEY",
                "Paste the GitHub App's PEM private key (\\n escapes are accepted), "
                "or point GITHUB_PRIVATE_KEY_PATH at the .pem file.",
            )
        
        try:
            return normalize_private_key(Path(key_path).read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigurationError(
                f"GITHUB_PRIVATE_KEY_PATH {key_path!r} could not be read: {e}"
            ) from e
