"""
Main sync engine for event → GitHub synchronization.

Orchestrates:
- Rendering the event snapshot to Markdown
- Fetching the current remote document and its revision
- Section-level change detection
- Credential issuance (only when a write is needed)
- The conditional write
- Run diagnostics
"""

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from .change_detector import ChangeSet, diff_documents, generate_commit_message
from .config import Config
from .errors import AuthenticationError, SyncError
from .github_api import GitHubAPI
from .github_auth import Credential, GitHubAppAuth
from .github_store import GitHubContentsStore, RemoteDocument, WriteResult
from .markdown_renderer import MarkdownRenderer
from .models import EventRecord

logger = logging.getLogger(__name__)

# A token this close to expiry is not used for a write.
CREDENTIAL_MARGIN = timedelta(seconds=30)


class SyncStage(Enum):
    """Where a sync run currently is."""
    IDLE = "idle"
    RENDERING = "rendering"
    FETCHING = "fetching"
    DIFFING = "diffing"
    NOOP = "no-op"
    AUTHENTICATING = "authenticating"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


class SyncStatus(Enum):
    """Outcome of a successful run."""
    NOOP = "no-op"
    CREATED = "created"
    UPDATED = "updated"


@dataclass
class LogEntry:
    """One diagnostic entry, as shown in the admin sync panel."""
    
    timestamp: datetime
    type: str
    title: str
    details: Any = None
    
    def to_dict(self) -> dict:
        """JSON-ready form."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "title": self.title,
            "details": self.details,
        }


class SyncLog:
    """
    Bounded in-memory buffer of diagnostic entries.
    
    Shared by successive runs so operators can read recent history; never
    written anywhere persistent.
    """
    
    def __init__(self, max_entries: int = 100):
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
    
    def add(self, entry: LogEntry) -> LogEntry:
        self._entries.append(entry)
        return entry
    
    def entries(self) -> list[LogEntry]:
        """Entries oldest first."""
        return list(self._entries)
    
    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class SyncResult:
    """Result of a sync operation."""
    
    status: SyncStatus
    changes: ChangeSet
    revision: Optional[str] = None
    commit_sha: Optional[str] = None
    url: Optional[str] = None
    dry_run: bool = False
    diagnostics: list[LogEntry] = field(default_factory=list)
    
    @property
    def written(self) -> bool:
        """Whether the remote document was actually written."""
        return self.status is not SyncStatus.NOOP and not self.dry_run
    
    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "revision": self.revision,
            "commit_sha": self.commit_sha,
            "url": self.url,
            "dry_run": self.dry_run,
            "changes": self.changes.to_dict(),
            "diagnostics": [entry.to_dict() for entry in self.diagnostics],
        }


class SyncEngine:
    """
    Orchestrator for event → GitHub synchronization.
    
    One call to ``sync`` walks:
    Rendering → Fetching → Diffing → (NoOp | Authenticating → Writing) → Done | Failed
    
    A no-op run stops before a credential is ever requested. A conflict on
    write is surfaced to the caller, never retried here.
    """
    
    def __init__(
        self,
        config: Config,
        *,
        renderer: Optional[MarkdownRenderer] = None,
        store: Optional[GitHubContentsStore] = None,
        auth: Optional[GitHubAppAuth] = None,
        clock: Optional[Callable[[], datetime]] = None,
        log: Optional[SyncLog] = None,
    ):
        """
        Initialize sync engine.
        
        Args:
            config: Configuration instance.
            renderer: Document renderer; built from config if omitted.
            store: Remote document store; built from config if omitted.
            auth: Credential provider; built from config if omitted.
            clock: Returns the current instant. Defaults to UTC now.
            log: Diagnostic buffer to append to; a private one if omitted.
        """
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.log = log if log is not None else SyncLog()
        
        api = None
        if store is None or auth is None:
            api = GitHubAPI(api_url=config.api_url, timeout=config.http_timeout)
        
        self.renderer = renderer or MarkdownRenderer(config.render_options(), clock=self.clock)
        self.store = store or GitHubContentsStore(api)
        self.auth = auth or GitHubAppAuth(api, clock=self.clock)
        self._stage = SyncStage.IDLE
    
    @property
    def stage(self) -> SyncStage:
        """Stage of the current (or last) run."""
        return self._stage
    
    def logs(self) -> list[LogEntry]:
        """All buffered diagnostic entries, oldest first."""
        return self.log.entries()
    
    def sync(self, events: Iterable[EventRecord]) -> SyncResult:
        """
        Mirror the event snapshot to the remote document.
        
        Args:
            events: Event snapshot; archived events are skipped.
            
        Returns:
            SyncResult describing what happened.
            
        Raises:
            SyncError: Any stage failure, after it has been logged.
        """
        run_entries: list[LogEntry] = []
        
        try:
            self._stage = SyncStage.RENDERING
            location = self.config.location
            events = list(events)
            candidate = self.renderer.render(events)
            self._info(run_entries, "Starting GitHub sync", {
                "events": len(events),
                "location": str(location),
            })
            
            credential = None
            if self.config.authenticated_fetch:
                credential = self._issue_credential()
            
            self._stage = SyncStage.FETCHING
            current = self.store.fetch(location, credential)
            previous_text = current.text if current else ""
            
            self._stage = SyncStage.DIFFING
            changes = diff_documents(previous_text, candidate)
            
            if not self._needs_write(current, changes, candidate):
                self._stage = SyncStage.NOOP
                self._info(run_entries, "No changes to sync", {
                    "revision": current.revision if current else None,
                    "changes": changes.to_dict(),
                })
                self._stage = SyncStage.DONE
                return SyncResult(
                    status=SyncStatus.NOOP,
                    changes=changes,
                    revision=current.revision if current else None,
                    url=current.html_url if current else None,
                    diagnostics=run_entries,
                )
            
            status = SyncStatus.CREATED if current is None else SyncStatus.UPDATED
            
            if self.config.dry_run:
                self._info(run_entries, "Dry run - remote document not written", {
                    "would": status.value,
                    "changes": changes.to_dict(),
                })
                self._stage = SyncStage.DONE
                return SyncResult(
                    status=status,
                    changes=changes,
                    revision=current.revision if current else None,
                    dry_run=True,
                    diagnostics=run_entries,
                )
            
            if credential is None:
                credential = self._issue_credential()
            
            self._stage = SyncStage.WRITING
            written = self._write(current, candidate, changes, credential)
            
            self._info(run_entries, "GitHub sync completed", {
                "status": status.value,
                "revision": written.revision,
                "commit_sha": written.commit_sha,
                "url": written.html_url,
                "changes": changes.to_dict(),
            })
            self._stage = SyncStage.DONE
            return SyncResult(
                status=status,
                changes=changes,
                revision=written.revision,
                commit_sha=written.commit_sha,
                url=written.html_url,
                diagnostics=run_entries,
            )
        
        except SyncError as e:
            self._fail(run_entries, e)
            raise
        except Exception as e:
            error = SyncError(f"Unexpected error while {self._stage.value}: {e}")
            self._fail(run_entries, error)
            raise error from e
    
    def _needs_write(
        self,
        current: Optional[RemoteDocument],
        changes: ChangeSet,
        candidate: str,
    ) -> bool:
        """
        Decide between no-op and write.
        
        A missing document is always created. Otherwise only added or
        removed sections count, unless force sync is on, in which case any
        byte-level difference does.
        """
        if current is None:
            return True
        if not changes.is_noop:
            return True
        return self.config.force_sync and current.text != candidate
    
    def _issue_credential(self) -> Credential:
        self._stage = SyncStage.AUTHENTICATING
        credential = self.auth.issue(self.config.identity)
        logger.debug(
            "Installation token valid for %s",
            credential.remaining(self.clock()),
        )
        return credential
    
    def _write(
        self,
        current: Optional[RemoteDocument],
        candidate: str,
        changes: ChangeSet,
        credential: Credential,
    ) -> WriteResult:
        if credential.is_expired(self.clock(), margin=CREDENTIAL_MARGIN):
            raise AuthenticationError(
                f"Installation token expired at {credential.expires_at.isoformat()} "
                "before the document could be written"
            )
        
        message = self.config.commit_message or generate_commit_message(
            changes, is_initial=current is None
        )
        return self.store.write(
            self.config.location,
            candidate,
            current.revision if current else None,
            message,
            credential,
        )
    
    # =========================================================================
    # Diagnostics
    # =========================================================================
    
    def _info(self, run_entries: list[LogEntry], title: str, details: Any = None) -> None:
        logger.info("%s: %s", title, details)
        entry = self.log.add(LogEntry(self.clock(), "info", title, details))
        run_entries.append(entry)
    
    def _fail(self, run_entries: list[LogEntry], error: SyncError) -> None:
        failed_stage = self._stage
        self._stage = SyncStage.FAILED
        
        details = {"stage": failed_stage.value, **error.to_dict()}
        logger.error("GitHub sync failed while %s: %s", failed_stage.value, error)
        entry = self.log.add(LogEntry(self.clock(), "error", "GitHub sync failed", details))
        run_entries.append(entry)
