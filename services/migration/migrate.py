"""
Copy memos and daily plans from the embedded store to the hosted backend.

Memos are matched by ``uid`` so the tool can be re-run safely: rows whose
uid already exists remotely are skipped. Plans carry no stable key, so they
are only copied while the hosted plan table is still empty.

Usage:
    python -m services.migration.migrate migrate [--dry-run] [--export-only]
    python -m services.migration.migrate import-json memo.json daily_plan.json
"""

import asyncio
import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

import typer
from rich import print

from shared.config import get_cloud_config, get_env
from shared.db_operations import DatabaseOperations
from shared.errors import BackendUnavailable, NotesError
from shared.models import DEFAULT_CATEGORY, STATUS_PENDING, DailyPlan, Memo
from services.sync_service.adapters.cloud import CloudAdapter, build_cloud_adapter
from services.sync_service.retry import retry_with_exponential_backoff

logger = logging.getLogger(__name__)

BATCH_SIZE = 5
MEMO_EXPORT_FILE = "memo.migration.jsonl"
PLAN_EXPORT_FILE = "daily_plan.migration.json"

MEMO_FIELDS = (
    "uid", "created_ts", "updated_ts", "category", "target_date",
    "completion_status", "content", "pinned", "archived",
)
PLAN_FIELDS = (
    "plan_date", "title", "description", "category", "completed",
    "priority", "created_ts", "updated_ts", "completed_ts",
)

network_retry = retry_with_exponential_backoff(
    max_retries=3,
    initial_delay=1.0,
    exceptions=(BackendUnavailable,)
)


def get_export_dir() -> Path:
    return Path(get_env("MIGRATION_EXPORT_DIR", "exports"))


def memo_row(memo: Memo) -> Dict[str, Any]:
    """Hosted-table row for a memo; the id is assigned by the target."""
    data = memo.to_dict()
    return {name: data[name] for name in MEMO_FIELDS}


def plan_row(plan: DailyPlan) -> Dict[str, Any]:
    data = plan.to_dict()
    row = {name: data[name] for name in PLAN_FIELDS}
    row["description"] = row["description"] or ""
    return row


def _flag(value: Any) -> bool:
    return value is True or value == 1


def legacy_memo_row(raw: Dict[str, Any], now: int) -> Dict[str, Any]:
    """Normalise a row from an old ``memo.json`` dump (0/1 flags, missing fields)."""
    created_ts = int(raw.get("created_ts") or now)
    return {
        "uid": raw.get("uid") or str(uuid4()),
        "created_ts": created_ts,
        "updated_ts": int(raw.get("updated_ts") or created_ts),
        "category": raw.get("category") or DEFAULT_CATEGORY,
        "target_date": raw.get("target_date") or None,
        "completion_status": raw.get("completion_status") or STATUS_PENDING,
        "content": raw.get("content") or "",
        "pinned": _flag(raw.get("pinned")),
        "archived": _flag(raw.get("archived")),
    }


def legacy_plan_row(raw: Dict[str, Any], now: int) -> Dict[str, Any]:
    created_ts = int(raw.get("created_ts") or now)
    return {
        "plan_date": raw["plan_date"],
        "title": raw["title"],
        "description": raw.get("description") or "",
        "category": raw.get("category") or DEFAULT_CATEGORY,
        "completed": _flag(raw.get("completed")),
        "priority": int(raw.get("priority") or 0),
        "created_ts": created_ts,
        "updated_ts": int(raw.get("updated_ts") or created_ts),
        "completed_ts": int(raw["completed_ts"]) if raw.get("completed_ts") else None,
    }


@dataclass
class MigrationReport:
    """Outcome of a migration run."""
    local_memos: int = 0
    local_plans: int = 0
    memos_inserted: int = 0
    memos_skipped: int = 0
    plans_inserted: int = 0
    plans_skipped: bool = False
    remote_memos: int = 0
    dry_run: bool = False


class Migrator:
    """Moves rows from the embedded store (or a JSON dump) into the hosted tables."""

    def __init__(
        self,
        db_ops: Optional[DatabaseOperations] = None,
        cloud: Optional[CloudAdapter] = None,
        batch_size: int = BATCH_SIZE
    ):
        self.db_ops = db_ops
        self.cloud = cloud
        self.batch_size = batch_size

    def _require_cloud(self) -> CloudAdapter:
        if self.cloud is None:
            raise NotesError("No hosted backend configured")
        return self.cloud

    def local_counts(self) -> Dict[str, int]:
        return {"memo": self.db_ops.count_memos(), "daily_plan": self.db_ops.count_plans()}

    def iter_memo_batches(self, total: int):
        """Local memos in ``created_ts`` order, ``batch_size`` at a time."""
        for offset in range(0, total, self.batch_size):
            batch = self.db_ops.get_memo_batch(offset, self.batch_size)
            if not batch:
                return
            yield offset, [memo_row(memo) for memo in batch]

    def export(self, export_dir: Path) -> List[Path]:
        """
        Write local data to files without touching the hosted backend.

        Memos go to a JSON-lines file, plans to a single pretty-printed array.
        """
        export_dir.mkdir(parents=True, exist_ok=True)
        memo_path = export_dir / MEMO_EXPORT_FILE
        plan_path = export_dir / PLAN_EXPORT_FILE

        counts = self.local_counts()
        with open(memo_path, "w", encoding="utf-8") as handle:
            for _, rows in self.iter_memo_batches(counts["memo"]):
                for row in rows:
                    handle.write(json.dumps(row, ensure_ascii=False) + "\n")

        plans = [plan_row(plan) for plan in self.db_ops.get_all_plans()]
        with open(plan_path, "w", encoding="utf-8") as handle:
            json.dump(plans, handle, ensure_ascii=False, indent=2)

        logger.info(f"Exported {counts['memo']} memos and {len(plans)} plans to {export_dir}")
        return [memo_path, plan_path]

    @network_retry
    async def _ping(self) -> None:
        await self._require_cloud().ping()

    @network_retry
    async def _remote_uids(self) -> Set[str]:
        return await self._require_cloud().fetch_memo_uids()

    @network_retry
    async def _remote_has_plans(self) -> bool:
        return await self._require_cloud().has_plans()

    @network_retry
    async def _insert(self, table: str, rows: List[Dict[str, Any]]) -> None:
        await self._require_cloud().insert_rows(table, rows)

    async def insert_new_memos(self, batches, report: MigrationReport) -> Set[str]:
        """Insert rows whose uid the hosted table does not have yet."""
        remote_uids = await self._remote_uids()
        for offset, rows in batches:
            new_rows = [row for row in rows if row["uid"] not in remote_uids]
            if new_rows:
                await self._insert("memo", new_rows)
                remote_uids.update(row["uid"] for row in new_rows)
            report.memos_inserted += len(new_rows)
            report.memos_skipped += len(rows) - len(new_rows)
            logger.info(f"memo {offset + 1}-{offset + len(rows)} processed, {len(new_rows)} new")
        report.remote_memos = len(remote_uids)
        return remote_uids

    async def insert_plans_if_empty(self, rows: List[Dict[str, Any]], report: MigrationReport) -> None:
        if not rows:
            return
        if await self._remote_has_plans():
            logger.info("Hosted daily_plan table already has rows, skipping plans")
            report.plans_skipped = True
            return
        for offset in range(0, len(rows), self.batch_size):
            batch = rows[offset:offset + self.batch_size]
            await self._insert("daily_plan", batch)
            report.plans_inserted += len(batch)

    async def migrate(self, dry_run: bool = False) -> MigrationReport:
        """
        Copy local rows to the hosted backend.

        Args:
            dry_run: Only check connectivity and count local rows

        Returns:
            MigrationReport with inserted and skipped counts
        """
        counts = self.local_counts()
        report = MigrationReport(
            local_memos=counts["memo"],
            local_plans=counts["daily_plan"],
            dry_run=dry_run
        )

        await self._ping()
        logger.info(f"Local: memo={report.local_memos}, daily_plan={report.local_plans}; hosted backend reachable")
        if dry_run:
            return report

        await self.insert_new_memos(self.iter_memo_batches(report.local_memos), report)
        await self.insert_plans_if_empty([plan_row(plan) for plan in self.db_ops.get_all_plans()], report)
        return report

    async def import_json(self, memo_path: Optional[Path], plan_path: Optional[Path], now: int) -> MigrationReport:
        """Load legacy JSON dumps into the hosted backend with the same dedup rules."""
        report = MigrationReport()
        memo_rows = [legacy_memo_row(raw, now) for raw in _load_json_rows(memo_path)]
        plan_rows = [legacy_plan_row(raw, now) for raw in _load_json_rows(plan_path)]
        report.local_memos = len(memo_rows)
        report.local_plans = len(plan_rows)

        batches = (
            (offset, memo_rows[offset:offset + self.batch_size])
            for offset in range(0, len(memo_rows), self.batch_size)
        )
        await self.insert_new_memos(batches, report)
        await self.insert_plans_if_empty(plan_rows, report)
        return report


def _load_json_rows(path: Optional[Path]) -> List[Dict[str, Any]]:
    if path is None:
        return []
    if not path.exists():
        logger.warning(f"{path} not found, skipping")
        return []
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        logger.warning(f"{path} is empty, skipping")
        return []
    rows = json.loads(raw)
    if not isinstance(rows, list):
        raise typer.BadParameter(f"{path} must contain a JSON array")
    return rows


def _print_report(report: MigrationReport) -> None:
    print(f"Local: memo={report.local_memos}, daily_plan={report.local_plans}")
    if report.dry_run:
        print("[yellow]Dry run, nothing was written[/yellow]")
        return
    print(
        f"memo: [green]{report.memos_inserted} inserted[/green], "
        f"{report.memos_skipped} already present, {report.remote_memos} uids remote"
    )
    if report.plans_skipped:
        print("[yellow]daily_plan: hosted table not empty, plans skipped[/yellow]")
    else:
        print(f"daily_plan: [green]{report.plans_inserted} inserted[/green]")


def _build_cloud(url: Optional[str], api_key: Optional[str]) -> CloudAdapter:
    config = get_cloud_config()
    try:
        return build_cloud_adapter(url or config["url"], api_key or config["api_key"])
    except NotesError as e:
        print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)


app = typer.Typer(help="Move Tesla Notes data from the local store to the hosted backend")


@app.command()
def migrate(
    database_url: str = typer.Option(None, help="Local store database URL (default: LOCAL_DATABASE_URL)"),
    url: str = typer.Option(None, help="Hosted backend URL (default: SUPABASE_URL)"),
    api_key: str = typer.Option(None, help="Hosted backend API key (default: SUPABASE_ANON_KEY)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Check connectivity and print counts only"),
    export_only: bool = typer.Option(False, "--export-only", help="Write export files, skip the hosted backend"),
    export_dir: Path = typer.Option(None, help="Export directory (default: MIGRATION_EXPORT_DIR or ./exports)"),
) -> None:
    """Copy local memos and plans to the hosted backend."""
    db_ops = DatabaseOperations(database_url)

    if export_only:
        paths = Migrator(db_ops).export(export_dir or get_export_dir())
        for path in paths:
            print(f"Exported [bold]{path}[/bold]")
        print("Export finished, hosted backend not contacted")
        return

    cloud = _build_cloud(url, api_key)

    async def run() -> MigrationReport:
        try:
            return await Migrator(db_ops, cloud).migrate(dry_run=dry_run)
        finally:
            await cloud.aclose()

    try:
        report = asyncio.run(run())
    except NotesError as e:
        print(f"[red]Migration failed:[/red] {e.message}")
        raise typer.Exit(code=1)
    _print_report(report)
    if not dry_run:
        print("[green]Migration finished[/green]")


@app.command("import-json")
def import_json(
    memo_file: Path = typer.Argument(Path("memo.json"), help="Legacy memo dump"),
    plan_file: Path = typer.Argument(Path("daily_plan.json"), help="Legacy daily plan dump"),
    url: str = typer.Option(None, help="Hosted backend URL (default: SUPABASE_URL)"),
    api_key: str = typer.Option(None, help="Hosted backend API key (default: SUPABASE_ANON_KEY)"),
) -> None:
    """Load legacy JSON dumps into the hosted backend."""

    cloud = _build_cloud(url, api_key)

    async def run() -> MigrationReport:
        try:
            return await Migrator(cloud=cloud).import_json(memo_file, plan_file, int(time.time()))
        finally:
            await cloud.aclose()

    try:
        report = asyncio.run(run())
    except NotesError as e:
        print(f"[red]Import failed:[/red] {e.message}")
        raise typer.Exit(code=1)
    _print_report(report)


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    app()
