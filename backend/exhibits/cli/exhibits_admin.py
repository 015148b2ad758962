"""CLI utilities for exhibit publication maintenance."""

# purpose: give administrators direct access to publish, suppress, preview, lock, and trash operations
# status: pilot
# depends_on: exhibits.bootstrap, exhibits.audit, exhibits.database

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

import typer

from .. import audit
from ..bootstrap import build_orchestrator, init_db
from ..database import SessionLocal
from ..identifiers import is_valid_uuid
from ..orchestrator import ExhibitOrchestrator
from ..schemas import AuditLogOut, OperationResult

app = typer.Typer(help="Exhibit publication maintenance commands")

_FAILURE_STATUSES = ("error", "invalid", "not_found", "locked", "partial_failure")


def _emit(result: OperationResult) -> None:
    typer.echo(json.dumps(result.model_dump(mode="json")))
    if result.status in _FAILURE_STATUSES:
        raise typer.Exit(code=1)


def _run(action: Callable[[ExhibitOrchestrator], Awaitable[OperationResult]]) -> None:
    orchestrator = build_orchestrator(events=None)

    async def run() -> OperationResult:
        result = await action(orchestrator)
        # In-process republishes must finish before the event loop closes.
        await orchestrator.scheduler.join()
        return result

    _emit(asyncio.run(run()))


def _require_uuid(value: str, name: str = "uuid") -> str:
    if not is_valid_uuid(value):
        raise typer.BadParameter(f"{name} must be a UUID, got {value!r}")
    return value


@app.command("init-db")
def init_database() -> None:
    """Create the exhibit tables on the configured database."""

    init_db()
    typer.echo(json.dumps({"status": "ok", "message": "Exhibit tables created"}))


@app.command("publish")
def publish(
    exhibit_id: str,
    user: Optional[str] = typer.Option(None, help="User recorded in the audit log"),
) -> None:
    exhibit_id = _require_uuid(exhibit_id, "exhibit_id")
    _run(lambda orchestrator: orchestrator.publish_exhibit(exhibit_id, user=user))


@app.command("suppress")
def suppress(
    exhibit_id: str,
    user: Optional[str] = typer.Option(None, help="User recorded in the audit log"),
) -> None:
    exhibit_id = _require_uuid(exhibit_id, "exhibit_id")
    _run(lambda orchestrator: orchestrator.suppress_exhibit(exhibit_id, user=user))


@app.command("preview")
def preview(
    exhibit_id: str,
    user: Optional[str] = typer.Option(None, help="User recorded in the audit log"),
) -> None:
    exhibit_id = _require_uuid(exhibit_id, "exhibit_id")
    _run(lambda orchestrator: orchestrator.build_preview(exhibit_id, user=user))


@app.command("delete-preview")
def delete_preview(
    exhibit_id: str,
    user: Optional[str] = typer.Option(None, help="User recorded in the audit log"),
) -> None:
    exhibit_id = _require_uuid(exhibit_id, "exhibit_id")
    _run(lambda orchestrator: orchestrator.delete_preview(exhibit_id, user=user))


@app.command("delete")
def delete(
    exhibit_id: str,
    user: Optional[str] = typer.Option(None, help="User recorded in the audit log"),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt"),
) -> None:
    """Move an exhibit and all of its content to the trash."""

    exhibit_id = _require_uuid(exhibit_id, "exhibit_id")
    if not yes:
        typer.confirm(f"Delete exhibit {exhibit_id} and all of its content?", abort=True)
    _run(lambda orchestrator: orchestrator.delete_exhibit(exhibit_id, user=user))


@app.command("state")
def state(exhibit_id: str) -> None:
    exhibit_id = _require_uuid(exhibit_id, "exhibit_id")
    _run(lambda orchestrator: orchestrator.get_exhibit_state(exhibit_id))


@app.command("lock")
def lock(kind: str, record_id: str, user: str = typer.Option(..., help="Editor taking the lock")) -> None:
    record_id = _require_uuid(record_id, "record_id")
    _run(lambda orchestrator: orchestrator.lock_for_edit(kind, record_id, user))


@app.command("unlock")
def unlock(
    kind: str,
    record_id: str,
    user: str = typer.Option(..., help="Editor releasing the lock"),
    force: bool = typer.Option(False, help="Release a lock held by another editor"),
) -> None:
    record_id = _require_uuid(record_id, "record_id")
    _run(lambda orchestrator: orchestrator.unlock(kind, record_id, user, force=force))


@app.command("release-locks")
def release_locks() -> None:
    """Clear locks whose lease has expired."""

    _run(lambda orchestrator: orchestrator.release_expired_locks())


@app.command("compact")
def compact(exhibit_id: str) -> None:
    exhibit_id = _require_uuid(exhibit_id, "exhibit_id")
    _run(lambda orchestrator: orchestrator.compact_order(exhibit_id))


@app.command("trash")
def trash(kind: Optional[List[str]] = typer.Option(None, help="Limit the listing to these kinds")) -> None:
    _run(lambda orchestrator: orchestrator.list_trashed(kind or None))


@app.command("restore")
def restore(
    kind: str,
    record_id: str,
    user: Optional[str] = typer.Option(None, help="User recorded in the audit log"),
) -> None:
    record_id = _require_uuid(record_id, "record_id")
    _run(lambda orchestrator: orchestrator.restore_record(kind, record_id, user=user))


@app.command("purge")
def purge(
    kind: str,
    record_id: str,
    user: Optional[str] = typer.Option(None, help="User recorded in the audit log"),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt"),
) -> None:
    """Permanently delete a trashed record and everything beneath it."""

    record_id = _require_uuid(record_id, "record_id")
    if not yes:
        typer.confirm(f"Permanently delete {kind} {record_id}?", abort=True)
    _run(lambda orchestrator: orchestrator.purge_record(kind, record_id, user=user))


@app.command("purge-trash")
def purge_trash(yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt")) -> None:
    if not yes:
        typer.confirm("Permanently delete every trashed record?", abort=True)
    _run(lambda orchestrator: orchestrator.purge_trash())


@app.command("audit")
def audit_log(
    target_id: Optional[str] = typer.Argument(None, help="Exhibit or record uuid"),
    limit: int = typer.Option(100, min=1, help="Maximum entries to list"),
) -> None:
    if target_id is not None:
        _require_uuid(target_id, "target_id")
    db = SessionLocal()
    try:
        entries = [
            AuditLogOut.model_validate(entry).model_dump(mode="json")
            for entry in audit.list_actions(db, target_id, limit)
        ]
    finally:
        db.close()
    typer.echo(json.dumps(entries))


@app.command("audit-report")
def audit_report(
    days: int = typer.Option(7, min=1, help="Window size in days"),
    user: Optional[str] = typer.Option(None, help="Only count actions by this user"),
) -> None:
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    db = SessionLocal()
    try:
        report = audit.generate_report(db, start, end, user)
    finally:
        db.close()
    typer.echo(json.dumps({"start": start.isoformat(), "end": end.isoformat(), "actions": report}))


if __name__ == "__main__":
    app()
