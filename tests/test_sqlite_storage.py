from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.models import Activity, WebhookTemplate


@pytest.fixture
def storage(tmp_path) -> SQLiteStorage:
    store = SQLiteStorage(str(tmp_path / "modwatch.db"), default_interval=30)
    store.init_db()
    return store


def _add_destination(storage: SQLiteStorage):
    webhook_id = storage.add_webhook("releases", "https://discord.test/1")
    return [hook for hook in storage.list_webhooks() if hook.id == webhook_id][0]


def test_init_db_is_idempotent(storage: SQLiteStorage) -> None:
    storage.init_db()
    default = storage.get_template_for(_add_destination(storage))
    assert default.use_embed
    assert default.embed_fields


def test_tracked_items_and_assigned_destinations(storage: SQLiteStorage) -> None:
    mod_a = storage.add_mod(1001, "JEI", "Minecraft", "2024-01-01T00:00:00Z", "https://cf.test/jei")
    mod_b = storage.add_mod(1002, "Create", "Minecraft", "2024-01-02T00:00:00Z")
    hook_1 = storage.add_webhook("one", "https://discord.test/1", username="Bot")
    hook_2 = storage.add_webhook("two", "https://discord.test/2", enabled=False)
    storage.assign_webhook(mod_b, hook_1)
    storage.assign_webhook(mod_b, hook_2)
    storage.assign_webhook(mod_b, hook_2)

    items = storage.list_tracked_items()
    assert [item.id for item in items] == [mod_a, mod_b]
    assert items[0].page_url == "https://cf.test/jei"
    assert storage.has_mod(1001)
    assert not storage.has_mod(9999)

    destinations = storage.list_destinations_for_item(mod_b)
    assert [d.id for d in destinations] == [hook_1, hook_2]
    assert destinations[0].username == "Bot"
    assert destinations[1].enabled is False
    assert storage.list_destinations_for_item(mod_a) == []


def test_set_last_updated(storage: SQLiteStorage) -> None:
    mod_id = storage.add_mod(1001, "JEI", "Minecraft", "old")
    storage.set_last_updated(mod_id, "new")
    assert storage.list_tracked_items()[0].last_updated == "new"


def test_settings_credential_and_interval(storage: SQLiteStorage) -> None:
    assert storage.get_credential() is None
    assert storage.get_configured_interval() == 30

    storage.set_api_key("abc")
    storage.set_update_interval(15)

    assert storage.get_credential() == "abc"
    assert storage.get_configured_interval() == 15
    with pytest.raises(ValueError):
        storage.set_update_interval(0)


def test_timestamps_round_trip_and_clear(storage: SQLiteStorage) -> None:
    moment = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)
    assert storage.get_timestamp("next_check_time") is None

    storage.set_timestamp("next_check_time", moment)
    storage.set_timestamp("next_check_time", moment + timedelta(minutes=5))
    assert storage.get_timestamp("next_check_time") == moment + timedelta(minutes=5)

    storage.clear_timestamp("next_check_time")
    assert storage.get_timestamp("next_check_time") is None


def test_custom_template_is_used_only_when_enabled(storage: SQLiteStorage) -> None:
    destination = _add_destination(storage)
    assert storage.get_template_for(destination).title == WebhookTemplate().title

    storage.save_webhook_template(destination.id, WebhookTemplate(title="custom", use_embed=False))
    updated = [hook for hook in storage.list_webhooks() if hook.id == destination.id][0]

    assert updated.use_custom_template
    assert storage.get_template_for(updated).title == "custom"
    assert storage.get_template_for(destination).title == WebhookTemplate().title


def test_activity_log_newest_first_and_cleanup(storage: SQLiteStorage) -> None:
    old = datetime.now(timezone.utc) - timedelta(days=100)
    storage.add_activity(Activity(activity_type="mod_added", description="old", timestamp=old))
    storage.add_activity(
        Activity(activity_type="mod_updated", description="new", mod_id=1, metadata={"author": "mezz"})
    )

    entries = storage.list_activities()
    assert [entry["description"] for entry in entries] == ["new", "old"]
    assert entries[0]["metadata"] == {"author": "mezz"}

    assert storage.cleanup_activities(90) == 1
    assert [entry["description"] for entry in storage.list_activities()] == ["new"]


def test_update_webhook_can_disable_and_rename(storage: SQLiteStorage) -> None:
    mod_id = storage.add_mod(1001, "JEI", "Minecraft", "old")
    destination = _add_destination(storage)
    storage.assign_webhook(mod_id, destination.id)

    storage.update_webhook(dataclasses.replace(destination, name="renamed", enabled=False, username="Bot"))

    stored = storage.get_webhook(destination.id)
    assert stored.name == "renamed"
    assert stored.enabled is False
    assert stored.username == "Bot"
    assert stored.url == destination.url
    assert storage.list_destinations_for_item(mod_id)[0].enabled is False
    assert storage.get_webhook(9999) is None


def test_delete_webhook_removes_assignments_and_template(storage: SQLiteStorage) -> None:
    mod_id = storage.add_mod(1001, "JEI", "Minecraft", "old")
    destination = _add_destination(storage)
    storage.assign_webhook(mod_id, destination.id)
    storage.save_webhook_template(destination.id, WebhookTemplate(title="custom"))

    removed = storage.delete_webhook(destination.id)

    assert removed.name == "releases"
    assert storage.list_webhooks() == []
    assert storage.list_destinations_for_item(mod_id) == []
    assert storage.delete_webhook(destination.id) is None


def test_delete_mod_keeps_activity_history(storage: SQLiteStorage) -> None:
    mod_id = storage.add_mod(1001, "JEI", "Minecraft", "old")
    destination = _add_destination(storage)
    storage.assign_webhook(mod_id, destination.id)
    storage.add_activity(Activity(activity_type="mod_added", description="added", mod_id=mod_id, mod_name="JEI"))

    removed = storage.delete_mod(mod_id)

    assert removed.name == "JEI"
    assert storage.get_mod(mod_id) is None
    assert not storage.has_mod(1001)
    assert storage.list_destinations_for_item(mod_id) == []
    entries = storage.list_activities()
    assert entries[0]["mod_id"] is None
    assert entries[0]["mod_name"] == "JEI"
    assert storage.delete_mod(mod_id) is None


def test_remove_webhook_assignment(storage: SQLiteStorage) -> None:
    mod_id = storage.add_mod(1001, "JEI", "Minecraft", "old")
    destination = _add_destination(storage)
    storage.assign_webhook(mod_id, destination.id)

    assert storage.remove_webhook_assignment(mod_id, destination.id)
    assert not storage.remove_webhook_assignment(mod_id, destination.id)
    assert storage.list_destinations_for_item(mod_id) == []
    assert storage.get_webhook(destination.id) is not None


def test_delete_custom_template_falls_back_to_default(storage: SQLiteStorage) -> None:
    destination = _add_destination(storage)
    storage.save_webhook_template(destination.id, WebhookTemplate(title="custom"))

    storage.delete_custom_template(destination.id)

    reverted = storage.get_webhook(destination.id)
    assert not reverted.use_custom_template
    assert storage.get_template_for(reverted).title == WebhookTemplate().title
    storage.save_webhook_template(destination.id, WebhookTemplate(title="again"))
    assert storage.get_template_for(storage.get_webhook(destination.id)).title == "again"


def test_clear_activities(storage: SQLiteStorage) -> None:
    storage.add_activity(Activity(activity_type="mod_added", description="one"))
    storage.add_activity(Activity(activity_type="mod_added", description="two"))

    assert storage.clear_activities() == 2
    assert storage.list_activities() == []
