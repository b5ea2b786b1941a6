import argparse
import json
import logging
import os
import sqlite3
from typing import List, Optional

from config import load_settings
from db import Database, PersonalRecordRepository, TemplateRepository, WorkoutRepository
from errors import NotFoundError, WorkoutStoreError, translate_sqlite_error
from models import UserPreferences
from planner_service import PlannerService
from recommendation_service import RecommendationService
from record_service import PersonalRecordService
from settings_schema import SettingsSchema
from stats_service import StatisticsService

logger = logging.getLogger(__name__)


def _emit(payload) -> None:
    print(json.dumps(payload, sort_keys=True, default=str))


def _repo_kwargs(settings: SettingsSchema) -> dict:
    return {"busy_timeout": settings.busy_timeout, "retry_backoff": settings.retry_backoff}


def init_db(settings: SettingsSchema) -> dict:
    """Create the schema, the local user and the built-in templates."""
    db = Database(settings.db_path, **_repo_kwargs(settings))
    user_id = db.ensure_default_user(
        settings.default_user_id,
        settings.default_user_name,
        UserPreferences(
            weight_unit=settings.weight_unit,
            default_rest_seconds=settings.default_rest_seconds,
        ),
    )
    planner = PlannerService(
        WorkoutRepository(settings.db_path, **_repo_kwargs(settings)),
        TemplateRepository(
            settings.db_path,
            system_owner_id=settings.system_owner_id,
            **_repo_kwargs(settings),
        ),
    )
    seeded = planner.seed_default_templates()
    return {"db_path": settings.db_path, "user_id": user_id, "seeded_templates": seeded}


def _copy_database(src_path: str, dst_path: str) -> None:
    """Copy ``src_path`` onto ``dst_path`` with the sqlite online backup API."""
    if not os.path.exists(src_path):
        raise NotFoundError(f"database {src_path} not found")
    try:
        src = sqlite3.connect(src_path)
        try:
            dst = sqlite3.connect(dst_path)
            try:
                src.backup(dst)
            finally:
                dst.close()
        finally:
            src.close()
    except sqlite3.Error as exc:
        raise translate_sqlite_error(exc) from exc
    logger.info("copied %s to %s", src_path, dst_path)


def backup_db(db_path: str, backup_path: str) -> None:
    _copy_database(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    _copy_database(backup_path, db_path)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Workout store utility commands")
    parser.add_argument("--settings", default="settings.yaml")
    parser.add_argument("--db", default=None, help="override db_path from settings")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init")
    sub.add_parser("health")
    sub.add_parser("info")
    sub.add_parser("vacuum")

    rst = sub.add_parser("reset")
    rst.add_argument("--yes", action="store_true", help="confirm dropping all data")

    for name in ("stats", "volume", "progress"):
        cmd = sub.add_parser(name)
        cmd.add_argument("--owner", default=None)

    rec = sub.add_parser("records")
    rec.add_argument("--owner", default=None)
    rec.add_argument("--limit", type=int, default=10)

    rcm = sub.add_parser("recommend")
    rcm.add_argument("--owner", default=None)
    rcm.add_argument("--count", type=int, default=3)

    bkp = sub.add_parser("backup")
    bkp.add_argument("--out", default="backup.db")

    res = sub.add_parser("restore")
    res.add_argument("--in", dest="src", default="backup.db")

    args = parser.parse_args(argv)

    settings = load_settings(args.settings)
    if args.db:
        settings = settings.model_copy(update={"db_path": args.db})
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    owner = getattr(args, "owner", None) or settings.default_user_id

    try:
        if args.cmd == "init":
            _emit(init_db(settings))
        elif args.cmd == "health":
            healthy = Database(settings.db_path, **_repo_kwargs(settings)).health_check()
            _emit({"db_path": settings.db_path, "healthy": healthy})
            return 0 if healthy else 1
        elif args.cmd == "info":
            _emit(Database(settings.db_path, **_repo_kwargs(settings)).info())
        elif args.cmd == "vacuum":
            Database(settings.db_path, **_repo_kwargs(settings)).vacuum()
            _emit({"db_path": settings.db_path, "vacuumed": True})
        elif args.cmd == "reset":
            if not args.yes:
                parser.error("reset drops every table; pass --yes to confirm")
            Database(settings.db_path, **_repo_kwargs(settings)).reset()
            _emit({"db_path": settings.db_path, "reset": True})
        elif args.cmd == "stats":
            service = StatisticsService(WorkoutRepository(settings.db_path, **_repo_kwargs(settings)))
            _emit({"owner_id": owner, **service.stats(owner)})
        elif args.cmd == "volume":
            service = StatisticsService(WorkoutRepository(settings.db_path, **_repo_kwargs(settings)))
            for part, volume in service.volume_by_body_part(owner).items():
                _emit({"body_part": part, "volume": volume})
        elif args.cmd == "progress":
            service = StatisticsService(WorkoutRepository(settings.db_path, **_repo_kwargs(settings)))
            _emit({"owner_id": owner, **service.progress(owner)})
        elif args.cmd == "recommend":
            service = RecommendationService(
                TemplateRepository(
                    settings.db_path,
                    system_owner_id=settings.system_owner_id,
                    **_repo_kwargs(settings),
                )
            )
            for template in service.recommendations(owner, args.count):
                _emit(
                    {
                        "id": template.id,
                        "name": template.name,
                        "category": template.category.value,
                        "usage_count": template.usage_count,
                        "reason": service.reason(template),
                    }
                )
        elif args.cmd == "records":
            service = PersonalRecordService(
                PersonalRecordRepository(settings.db_path, **_repo_kwargs(settings))
            )
            for record in service.list_recent(owner, args.limit):
                _emit(record.model_dump(mode="json"))
        elif args.cmd == "backup":
            backup_db(settings.db_path, args.out)
            _emit({"db_path": settings.db_path, "backup": args.out})
        elif args.cmd == "restore":
            restore_db(args.src, settings.db_path)
            _emit({"db_path": settings.db_path, "restored_from": args.src})
    except WorkoutStoreError as exc:
        logger.error("%s failed: %s", args.cmd, exc)
        _emit({"error": type(exc).__name__, "message": str(exc)})
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
