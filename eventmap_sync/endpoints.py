"""
Handlers behind the admin sync endpoints.

Framework-agnostic: each handler returns an EndpointResponse with a status
code and a JSON-ready body, for a thin HTTP layer to serve as
``POST /api/admin/sync-github`` and ``GET /api/admin/sync-debug-logs``.
Admin gating is the HTTP layer's job.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .config import Config
from .errors import SyncError
from .models import EventRecord
from .sync_engine import LogEntry, SyncEngine, SyncLog, SyncResult, SyncStatus

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "configuration": 500,
    "authentication": 502,
    "transient": 503,
    "conflict": 409,
    "decode": 502,
    "remote": 502,
    "internal": 500,
}

ERROR_MESSAGES = {
    "configuration": "GitHub連携が設定されていません",
    "authentication": "GitHubの認証に失敗しました",
    "transient": "GitHubとの通信に失敗しました。しばらくしてから再試行してください",
    "conflict": "GitHub上のファイルが同時に更新されました。もう一度同期してください",
}
DEFAULT_ERROR_MESSAGE = "GitHub同期に失敗しました"


@dataclass
class EndpointResponse:
    """Status code plus JSON-ready body."""
    
    status_code: int
    body: Any


def success_body(result: SyncResult) -> dict:
    """Success payload: ``{success, message, url?, status}``."""
    if result.dry_run:
        message = "ドライラン: GitHubへの書き込みは行っていません"
    elif result.status is SyncStatus.NOOP:
        message = "イベント一覧に変更がないため、同期をスキップしました"
    else:
        message = "GitHubリポジトリにイベント一覧を同期しました"
    
    body = {
        "success": True,
        "message": message,
        "status": result.status.value,
    }
    if result.url:
        body["url"] = result.url
    return body


def failure_response(error: SyncError) -> EndpointResponse:
    """Failure payload: ``{error, details, kind, retryable}`` with a non-2xx status."""
    body = {
        "error": ERROR_MESSAGES.get(error.kind, DEFAULT_ERROR_MESSAGE),
        "details": error.message,
        "kind": error.kind,
        "retryable": error.retryable,
    }
    if error.kind == "configuration":
        body["configured"] = False
    return EndpointResponse(STATUS_BY_KIND.get(error.kind, 500), body)


class SyncEndpoints:
    """
    Trigger and diagnostics handlers sharing one diagnostic buffer.
    
    Each trigger builds a fresh engine, so credentials never outlive a run,
    while the buffer keeps history for the diagnostics endpoint.
    """
    
    def __init__(
        self,
        load_events: Callable[[], Iterable[EventRecord]],
        config_loader: Callable[[], Config] = Config.from_env,
        engine_factory: Callable[..., SyncEngine] = SyncEngine,
        log: Optional[SyncLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            load_events: Returns the current event snapshot.
            config_loader: Loads configuration; raises ConfigurationError when absent.
            engine_factory: Builds an engine from a config and ``log=`` buffer.
            log: Shared diagnostic buffer.
            clock: Timestamps for entries logged outside the engine.
        """
        self.load_events = load_events
        self.config_loader = config_loader
        self.engine_factory = engine_factory
        self.log = log if log is not None else SyncLog()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
    
    def trigger(self) -> EndpointResponse:
        """Run one sync. Concurrent duplicate triggers are safe; the loser gets a conflict."""
        try:
            config = self.config_loader()
            engine = self.engine_factory(config, log=self.log)
        except SyncError as e:
            self._log_error("GitHub sync is not configured", e)
            return failure_response(e)
        
        try:
            events = list(self.load_events())
        except Exception as e:
            error = SyncError(f"Failed to load events: {e}")
            logger.exception("Failed to load events for sync")
            self._log_error("Failed to load events", error)
            return failure_response(error)
        
        try:
            result = engine.sync(events)
        except SyncError as e:
            return failure_response(e)
        
        return EndpointResponse(200, success_body(result))
    
    def diagnostics(self) -> EndpointResponse:
        """Buffered entries as ``[{timestamp, type, title, details}]``, oldest first."""
        return EndpointResponse(200, [entry.to_dict() for entry in self.log.entries()])
    
    def _log_error(self, title: str, error: SyncError) -> None:
        logger.error("%s: %s", title, error)
        self.log.add(LogEntry(self.clock(), "error", title, error.to_dict()))
