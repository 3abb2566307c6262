"""
Remote document store on the GitHub contents API.

A document's blob SHA is its revision marker: fetch returns it, and write
sends it back so GitHub refuses to overwrite a newer version.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import requests

from .errors import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    DecodeError,
    RemoteStoreError,
)
from .github_api import GitHubAPI
from .github_auth import Credential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentLocation:
    """Where the document lives: repository, path and optional branch."""
    
    owner: str
    repo: str
    path: str
    branch: Optional[str] = None
    
    def __post_init__(self):
        if not self.owner or not self.repo or not self.path.strip("/"):
            raise ConfigurationError(
                f"Incomplete document location: {self.owner!r}/{self.repo!r}:{self.path!r}"
            )
    
    @classmethod
    def from_slug(cls, slug: str, path: str, branch: Optional[str] = None) -> "DocumentLocation":
        """Build a location from an ``owner/repo`` slug."""
        owner, sep, repo = slug.strip().partition("/")
        if not sep or "/" in repo:
            raise ConfigurationError(
                f"Repository must be given as 'owner/repo', got {slug!r}"
            )
        return cls(owner=owner, repo=repo, path=path, branch=branch)
    
    @property
    def api_path(self) -> str:
        """Contents API path for this document."""
        return f"/repos/{self.owner}/{self.repo}/contents/{quote(self.path.strip('/'))}"
    
    def __str__(self) -> str:
        ref = f"@{self.branch}" if self.branch else ""
        return f"{self.owner}/{self.repo}/{self.path.strip('/')}{ref}"


@dataclass(frozen=True)
class RemoteDocument:
    """Current remote text and its revision marker."""
    
    text: str
    revision: str
    html_url: Optional[str] = None


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a successful write."""
    
    revision: str
    commit_sha: str
    html_url: Optional[str] = None
    created: bool = False


class GitHubContentsStore:
    """Reads and conditionally writes one file through the contents API."""
    
    def __init__(self, api: GitHubAPI):
        """
        Initialize the store.
        
        Args:
            api: API wrapper carrying base URL, timeout and session.
        """
        self.api = api
    
    def fetch(
        self,
        location: DocumentLocation,
        credential: Optional[Credential] = None,
    ) -> Optional[RemoteDocument]:
        """
        Fetch the current document.
        
        Args:
            location: Document to read.
            credential: Installation token; omit for public repositories.
            
        Returns:
            The document, or None if it does not exist yet.
        """
        params = {"ref": location.branch} if location.branch else None
        response = self.api.request(
            "GET",
            location.api_path,
            token=credential.token if credential else None,
            params=params,
        )
        
        if response.status_code == 404:
            logger.info("Document %s does not exist yet", location)
            return None
        
        self._raise_for_status(response, f"Fetching {location}")
        
        data = self.api.decode_json(response)
        return self._parse_document(data, response.text)
    
    def write(
        self,
        location: DocumentLocation,
        text: str,
        expected_revision: Optional[str],
        message: str,
        credential: Credential,
    ) -> WriteResult:
        """
        Write the document, conditioned on its revision.
        
        Args:
            location: Document to write.
            text: New document text.
            expected_revision: Revision seen on fetch; None to create a
                document that must not exist yet.
            message: Commit message.
            credential: Installation token.
            
        Returns:
            WriteResult with the new revision.
            
        Raises:
            ConflictError: The document changed since ``expected_revision``,
                or already exists when creating.
        """
        body = {
            "message": message,
            "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
        }
        if expected_revision is not None:
            body["sha"] = expected_revision
        if location.branch:
            body["branch"] = location.branch
        
        response = self.api.request(
            "PUT",
            location.api_path,
            token=credential.token,
            json=body,
        )
        
        if self._is_conflict(response, expected_revision):
            logger.warning(
                "Write to %s conflicted (expected revision %s): %s",
                location, expected_revision, response.text,
            )
            if expected_revision is None:
                error_message = (
                    f"{location} already exists but could not be read before writing: "
                    f"{response.text}\nIf the repository is private, set "
                    "SYNC_AUTHENTICATED_FETCH=true so the document is fetched with the installation token."
                )
            else:
                error_message = f"{location} changed since revision {expected_revision}: {response.text}"
            raise ConflictError(
                error_message,
                details={
                    "status_code": response.status_code,
                    "expected_revision": expected_revision,
                    "body": response.text,
                },
            )
        
        self._raise_for_status(response, f"Writing {location}")
        
        data = self.api.decode_json(response)
        return self._parse_write_result(data, response.text, created=response.status_code == 201)
    
    # =========================================================================
    # Response handling
    # =========================================================================
    
    @staticmethod
    def _is_conflict(response: requests.Response, expected_revision: Optional[str]) -> bool:
        """
        GitHub reports a stale ``sha`` with 409, and a create over an
        existing file (no ``sha`` sent) with 422.
        """
        if response.status_code == 409:
            return True
        if response.status_code == 422:
            return expected_revision is None or "sha" in response.text
        return False
    
    def _raise_for_status(self, response: requests.Response, action: str) -> None:
        self.api.raise_transient(response, action)
        
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{action} was refused (HTTP {response.status_code}): {response.text}",
                details={"status_code": response.status_code, "body": response.text},
            )
        
        if not response.ok:
            raise RemoteStoreError(action + " failed", status_code=response.status_code, body=response.text)
    
    @staticmethod
    def _parse_document(data: object, raw: str) -> RemoteDocument:
        if isinstance(data, list):
            raise DecodeError("Document path is a directory, not a file", payload=raw)
        if not isinstance(data, dict) or not isinstance(data.get("sha"), str):
            raise DecodeError("Contents response lacks a 'sha'", payload=raw)
        
        if data.get("encoding") != "base64" or not isinstance(data.get("content"), str):
            raise DecodeError(
                f"Unsupported content encoding {data.get('encoding')!r} "
                "(files over 1 MB are not returned inline)",
                payload=raw,
            )
        
        try:
            text = base64.b64decode(data["content"]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise DecodeError(f"Document content could not be decoded: {e}", payload=raw) from e
        
        return RemoteDocument(text=text, revision=data["sha"], html_url=data.get("html_url"))
    
    @staticmethod
    def _parse_write_result(data: object, raw: str, created: bool) -> WriteResult:
        content = data.get("content") if isinstance(data, dict) else None
        commit = data.get("commit") if isinstance(data, dict) else None
        
        if not isinstance(content, dict) or not isinstance(commit, dict):
            raise DecodeError("Write response lacks 'content' or 'commit'", payload=raw)
        if not isinstance(content.get("sha"), str) or not isinstance(commit.get("sha"), str):
            raise DecodeError("Write response lacks blob or commit 'sha'", payload=raw)
        
        return WriteResult(
            revision=content["sha"],
            commit_sha=commit["sha"],
            html_url=content.get("html_url"),
            created=created,
        )
