"""Application entry point for the modwatch update tracker."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

import settings
from adapters.curseforge_client import CurseForgeClient
from adapters.discord_webhook_notifier import DiscordWebhookNotifier
from adapters.notification_formatting import template_from_mapping
from adapters.sqlite_storage import SQLiteStorage
from core.config import DedupConfig, PacingConfig, ScheduleConfig
from core.cooldown import ManualCheckGate
from core.dedup import EventDedup
from core.dispatcher import NotificationDispatcher
from core.errors import CatalogError, NotificationError
from core.evaluator import UpdateEvaluator
from core.events import EventBus
from core.models import Activity, Destination, SweepResult, TrackedItem
from core.orchestrator import CheckOrchestrator
from core.pacing import PacingPolicy
from core.scheduler import NEXT_CHECK_KEY, UpdateScheduler

NAME = "MODWATCH"
FONT = "tarty-1"

API_KEY_ENV = "CURSEFORGE_API_KEY"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict, extra: Optional[list[str]] = None) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = list(extra or [])
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted({value for value in values if value}, key=len, reverse=True)


def _configure_logging(extra_secrets: Optional[list[str]] = None) -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config, extra_secrets)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/modwatch.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH, default_interval=settings.DEFAULT_INTERVAL_MINUTES)
    storage.init_db()
    # Webhook URLs embed their token, so they are masked like the API key.
    secrets = [storage.get_credential() or ""] + [webhook.url for webhook in storage.list_webhooks()]
    _configure_logging(secrets)
    return storage


def _credential_provider(storage: SQLiteStorage):
    def resolve() -> Optional[str]:
        return os.getenv(API_KEY_ENV) or storage.get_credential()

    return resolve


def _build_scheduler(storage: SQLiteStorage, events: EventBus) -> UpdateScheduler:
    pacing = PacingConfig(
        delivery_delay_seconds=settings.DELIVERY_DELAY_SECONDS,
        rate_limit_backoff_seconds=settings.RATE_LIMIT_BACKOFF_SECONDS,
    )
    dedup_config = DedupConfig(
        update_bucket_seconds=settings.UPDATE_BUCKET_SECONDS,
        event_window_seconds=settings.EVENT_WINDOW_SECONDS,
    )
    schedule = ScheduleConfig(
        default_interval_minutes=settings.DEFAULT_INTERVAL_MINUTES,
        manual_cooldown_seconds=settings.MANUAL_COOLDOWN_SECONDS,
    )

    catalog = CurseForgeClient(settings.CATALOG_BASE_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
    notifier = DiscordWebhookNotifier(
        storage,
        default_username=settings.DEFAULT_USERNAME,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    orchestrator = CheckOrchestrator(
        store=storage,
        evaluator=UpdateEvaluator(catalog, storage),
        dispatcher=NotificationDispatcher(notifier, PacingPolicy(pacing), activity_log=storage),
        credential_provider=_credential_provider(storage),
        events=events,
        dedup_config=dedup_config,
        activity_log=storage,
    )
    return UpdateScheduler(
        orchestrator=orchestrator,
        store=storage,
        state=storage,
        events=events,
        cooldown=ManualCheckGate(storage, duration_seconds=schedule.manual_cooldown_seconds),
        event_dedup=EventDedup(window_seconds=dedup_config.event_window_seconds),
    )


def _report(result: SweepResult) -> None:
    if result.skipped and not result.success:
        print(result.error)
    elif result.skipped:
        print("An update check is already running.")
    elif not result.success:
        print(f"Update check failed: {result.error}")
    elif result.updates_found:
        print(f"Checked {len(result.mods)} mods, updates found and notifications sent.")
    else:
        print(f"Checked {len(result.mods)} mods, no updates.")


def _run() -> None:
    _print_banner()
    storage = _open_storage()
    logger = logging.getLogger(__name__)
    logger.info("Starting modwatch")

    removed = storage.cleanup_activities(settings.ACTIVITY_TTL_DAYS)
    logger.info("Activity cleanup removed %s entries", removed)

    async def _serve() -> None:
        events = EventBus()
        scheduler = _build_scheduler(storage, events)
        await scheduler.start()
        logger.info("Scheduler started, interval is %s minutes", storage.get_configured_interval())
        try:
            # Sweeps run from the scheduler's timer; this task only keeps the loop alive.
            await asyncio.Event().wait()
        finally:
            scheduler.stop()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Stopping modwatch")


def _check() -> None:
    storage = _open_storage()

    async def _manual() -> SweepResult:
        scheduler = _build_scheduler(storage, EventBus())
        # The sweep's completion event moves the persisted next check time.
        scheduler.subscribe()
        try:
            return await scheduler.trigger_manual()
        finally:
            scheduler.stop()

    _report(asyncio.run(_manual()))


def _log_activity(
    storage: SQLiteStorage,
    activity_type: str,
    description: str,
    mod_id: Optional[int] = None,
    mod_name: Optional[str] = None,
    **metadata,
) -> None:
    storage.add_activity(
        Activity(
            activity_type=activity_type,
            description=description,
            mod_id=mod_id,
            mod_name=mod_name,
            metadata=metadata,
        )
    )


def _require_mod(storage: SQLiteStorage, mod_id: int) -> TrackedItem:
    item = storage.get_mod(mod_id)
    if item is None:
        raise RuntimeError(f"No tracked mod with id {mod_id}.")
    return item


def _require_webhook(storage: SQLiteStorage, webhook_id: int) -> Destination:
    webhook = storage.get_webhook(webhook_id)
    if webhook is None:
        raise RuntimeError(f"No webhook with id {webhook_id}.")
    return webhook


def _add_mod(curseforge_id: int) -> None:
    storage = _open_storage()
    api_key = _credential_provider(storage)()
    if not api_key:
        raise RuntimeError(f"{API_KEY_ENV} or a stored API key is required to add mods")
    if storage.has_mod(curseforge_id):
        raise RuntimeError("A mod with this CurseForge ID already exists.")

    client = CurseForgeClient(settings.CATALOG_BASE_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
    try:
        mod = client.lookup_mod(curseforge_id, api_key)
    except CatalogError as e:
        raise RuntimeError(f"Could not add mod {curseforge_id}: {e}") from e

    mod_id = storage.add_mod(mod.curseforge_id, mod.name, mod.game_name, mod.date_released, mod.page_url)
    _log_activity(
        storage,
        "mod_added",
        f'Added mod "{mod.name}"',
        mod_id=mod_id,
        mod_name=mod.name,
        game=mod.game_name,
        curseforge_id=mod.curseforge_id,
        initial_version_date=mod.date_released,
        page_url=mod.page_url,
    )
    print(f"{mod_id}. {mod.name} ({mod.game_name})")


def _delete_mod(mod_id: int) -> None:
    storage = _open_storage()
    item = storage.delete_mod(mod_id)
    if item is None:
        raise RuntimeError(f"No tracked mod with id {mod_id}.")
    _log_activity(
        storage,
        "mod_removed",
        f'Removed mod "{item.name}"',
        mod_name=item.name,
        game=item.game_name,
        deleted_mod_id=mod_id,
    )
    print(f"Stopped tracking {item.name}.")


def _add_webhook(args: argparse.Namespace) -> None:
    storage = _open_storage()
    webhook_id = storage.add_webhook(
        args.name,
        args.url,
        username=args.username,
        avatar_url=args.avatar_url,
        enabled=not args.disabled,
    )
    _log_activity(
        storage,
        "webhook_added",
        f'Added webhook "{args.name}"',
        webhook_name=args.name,
        webhook_id=webhook_id,
    )
    print(f"Webhook {webhook_id} added.")


def _edit_webhook(args: argparse.Namespace) -> None:
    storage = _open_storage()
    webhook = _require_webhook(storage, args.webhook_id)
    changes = {
        key: value
        for key, value in (
            ("name", args.name),
            ("url", args.url),
            ("username", args.username),
            ("avatar_url", args.avatar_url),
            ("enabled", args.enabled),
        )
        if value is not None
    }
    if not changes:
        raise RuntimeError("Nothing to change; pass at least one option.")

    updated = dataclasses.replace(webhook, **changes)
    storage.update_webhook(updated)
    _log_activity(
        storage,
        "webhook_updated",
        f'Updated webhook "{updated.name}"',
        webhook_name=updated.name,
        webhook_id=updated.id,
    )
    state = "enabled" if updated.enabled else "disabled"
    print(f"Webhook {updated.id} saved ({state}).")


def _delete_webhook(webhook_id: int) -> None:
    storage = _open_storage()
    webhook = storage.delete_webhook(webhook_id)
    if webhook is None:
        raise RuntimeError(f"No webhook with id {webhook_id}.")
    _log_activity(
        storage,
        "webhook_removed",
        f'Removed webhook "{webhook.name}"',
        webhook_name=webhook.name,
        webhook_id=webhook_id,
    )
    print(f"Webhook {webhook.name} removed.")


def _test_webhook(webhook_id: int) -> None:
    storage = _open_storage()
    webhook = _require_webhook(storage, webhook_id)
    notifier = DiscordWebhookNotifier(
        storage,
        default_username=settings.DEFAULT_USERNAME,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    try:
        asyncio.run(notifier.send_test(webhook))
    except NotificationError as e:
        raise RuntimeError(f"Test message to {webhook.name} failed: {e}") from e
    print(f"Test message sent to {webhook.name}.")


def _assign(mod_id: int, webhook_id: int) -> None:
    storage = _open_storage()
    item = _require_mod(storage, mod_id)
    webhook = _require_webhook(storage, webhook_id)
    storage.assign_webhook(mod_id, webhook_id)
    _log_activity(
        storage,
        "webhook_assigned",
        f'Assigned webhook "{webhook.name}" to mod "{item.name}"',
        mod_id=mod_id,
        mod_name=item.name,
        webhook_id=webhook_id,
        webhook_name=webhook.name,
    )


def _unassign(mod_id: int, webhook_id: int) -> None:
    storage = _open_storage()
    item = _require_mod(storage, mod_id)
    webhook = _require_webhook(storage, webhook_id)
    if not storage.remove_webhook_assignment(mod_id, webhook_id):
        raise RuntimeError(f"Webhook {webhook.name} is not assigned to {item.name}.")
    _log_activity(
        storage,
        "webhook_unassigned",
        f'Removed webhook "{webhook.name}" from mod "{item.name}"',
        mod_id=mod_id,
        mod_name=item.name,
        webhook_id=webhook_id,
        webhook_name=webhook.name,
    )


def _set_template(webhook_id: int, path: str) -> None:
    storage = _open_storage()
    webhook = _require_webhook(storage, webhook_id)
    try:
        with open(path, "r", encoding="utf-8") as handle:
            template = template_from_mapping(json.load(handle))
    except (OSError, ValueError, TypeError) as e:
        raise RuntimeError(f"Invalid template file {path}: {e}") from e
    storage.save_webhook_template(webhook_id, template)
    print(f"Custom template saved for {webhook.name}.")


def _reset_template(webhook_id: int) -> None:
    storage = _open_storage()
    webhook = _require_webhook(storage, webhook_id)
    storage.delete_custom_template(webhook_id)
    print(f"{webhook.name} now uses the default template.")


def _list() -> None:
    storage = _open_storage()
    print("Mods:")
    for item in storage.list_tracked_items():
        webhook_ids = [destination.id for destination in storage.list_destinations_for_item(item.id)]
        print(f"  {item.id}. {item.name} | {item.game_name} | {item.last_updated} | webhooks: {webhook_ids}")
    print("Webhooks:")
    for webhook in storage.list_webhooks():
        state = "enabled" if webhook.enabled else "disabled"
        template = "custom template" if webhook.use_custom_template else "default template"
        print(f"  {webhook.id}. {webhook.name} | {state} | {template}")


def _set_interval(minutes: int) -> None:
    storage = _open_storage()
    storage.set_update_interval(minutes)
    # A running scheduler picks the new interval up when its current timer fires.
    next_check = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    storage.set_timestamp(NEXT_CHECK_KEY, next_check)
    print(f"Update interval set to {minutes} minutes, next check at {next_check:%H:%M} UTC.")


def _activity(limit: int, clear: bool) -> None:
    storage = _open_storage()
    if clear:
        print(f"Cleared {storage.clear_activities()} activity entries.")
        return
    for entry in storage.list_activities(limit):
        print(f"[{entry['timestamp']}] {entry['activity_type']}: {entry['description']}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="modwatch")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the scheduled update checker")
    subparsers.add_parser("check", help="Check all mods for updates now")

    add_mod = subparsers.add_parser("add-mod", help="Track a CurseForge mod")
    add_mod.add_argument("curseforge_id", type=int)

    delete_mod = subparsers.add_parser("delete-mod", help="Stop tracking a mod")
    delete_mod.add_argument("mod_id", type=int)

    add_webhook = subparsers.add_parser("add-webhook", help="Add a Discord webhook")
    add_webhook.add_argument("name")
    add_webhook.add_argument("url")
    add_webhook.add_argument("--username")
    add_webhook.add_argument("--avatar-url")
    add_webhook.add_argument("--disabled", action="store_true")

    edit_webhook = subparsers.add_parser("edit-webhook", help="Change, enable or disable a webhook")
    edit_webhook.add_argument("webhook_id", type=int)
    edit_webhook.add_argument("--name")
    edit_webhook.add_argument("--url")
    edit_webhook.add_argument("--username")
    edit_webhook.add_argument("--avatar-url")
    toggle = edit_webhook.add_mutually_exclusive_group()
    toggle.add_argument("--enable", dest="enabled", action="store_const", const=True)
    toggle.add_argument("--disable", dest="enabled", action="store_const", const=False)

    delete_webhook = subparsers.add_parser("delete-webhook", help="Remove a webhook")
    delete_webhook.add_argument("webhook_id", type=int)

    test_webhook = subparsers.add_parser("test-webhook", help="Send a test message to a webhook")
    test_webhook.add_argument("webhook_id", type=int)

    assign = subparsers.add_parser("assign", help="Send a mod's updates to a webhook")
    assign.add_argument("mod_id", type=int)
    assign.add_argument("webhook_id", type=int)

    unassign = subparsers.add_parser("unassign", help="Stop sending a mod's updates to a webhook")
    unassign.add_argument("mod_id", type=int)
    unassign.add_argument("webhook_id", type=int)

    set_template = subparsers.add_parser("set-template", help="Use a custom template (JSON file) for a webhook")
    set_template.add_argument("webhook_id", type=int)
    set_template.add_argument("path")

    reset_template = subparsers.add_parser("reset-template", help="Return a webhook to the default template")
    reset_template.add_argument("webhook_id", type=int)

    subparsers.add_parser("list", help="Show tracked mods and webhooks")

    api_key = subparsers.add_parser("set-api-key", help="Store the CurseForge API key")
    api_key.add_argument("api_key")

    interval = subparsers.add_parser("set-interval", help="Set the check interval in minutes")
    interval.add_argument("minutes", type=int)

    activity = subparsers.add_parser("activity", help="Show recent activity")
    activity.add_argument("--limit", type=int, default=20)
    activity.add_argument("--clear", action="store_true", help="Delete the whole activity history")

    args = parser.parse_args(argv)
    if args.command == "check":
        _check()
        return
    if args.command == "add-mod":
        _add_mod(args.curseforge_id)
        return
    if args.command == "delete-mod":
        _delete_mod(args.mod_id)
        return
    if args.command == "add-webhook":
        _add_webhook(args)
        return
    if args.command == "edit-webhook":
        _edit_webhook(args)
        return
    if args.command == "delete-webhook":
        _delete_webhook(args.webhook_id)
        return
    if args.command == "test-webhook":
        _test_webhook(args.webhook_id)
        return
    if args.command == "assign":
        _assign(args.mod_id, args.webhook_id)
        return
    if args.command == "unassign":
        _unassign(args.mod_id, args.webhook_id)
        return
    if args.command == "set-template":
        _set_template(args.webhook_id, args.path)
        return
    if args.command == "reset-template":
        _reset_template(args.webhook_id)
        return
    if args.command == "list":
        _list()
        return
    if args.command == "set-api-key":
        _open_storage().set_api_key(args.api_key)
        print("API key saved.")
        return
    if args.command == "set-interval":
        _set_interval(args.minutes)
        return
    if args.command == "activity":
        _activity(args.limit, args.clear)
        return
    _run()


if __name__ == "__main__":
    main()
