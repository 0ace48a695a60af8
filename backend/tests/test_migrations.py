import pytest

from polychat_backend import migrations
from polychat_backend.chats.service import ChatStoreError

from conftest import seed_chat


@pytest.fixture
def chats(fake_db):
    seed_chat(fake_db, "a", model="openai/gpt-4o")
    seed_chat(fake_db, "b", model="google/gemini-pro")
    seed_chat(fake_db, "c", model="google/gemini-pro")
    seed_chat(fake_db, "d", model="openai/gpt-4o-mini")
    return fake_db


def test_count_and_find_invalid_models(chats):
    assert migrations.count_models() == {
        "openai/gpt-4o": 1,
        "google/gemini-pro": 2,
        "openai/gpt-4o-mini": 1,
    }
    assert migrations.find_invalid_models() == {"google/gemini-pro": 2}


def test_migrate_models_rewrites_unknown_ids(chats):
    updated = migrations.migrate_models("deepseek/deepseek-chat-v3-0324:free")

    assert updated == 2
    assert chats.data("chats/b")["model"] == "deepseek/deepseek-chat-v3-0324:free"
    assert chats.data("chats/c")["model"] == "deepseek/deepseek-chat-v3-0324:free"
    assert chats.data("chats/a")["model"] == "openai/gpt-4o"
    assert chats.commits == [2]


def test_migrate_models_is_idempotent(chats):
    migrations.migrate_models("openai/gpt-4o-mini")

    assert migrations.migrate_models("openai/gpt-4o-mini") == 0


def test_migrate_models_rejects_unknown_replacement(chats):
    with pytest.raises(ValueError):
        migrations.migrate_models("made/up")


def test_store_failure_is_wrapped(chats):
    chats.failing.add("stream")

    with pytest.raises(ChatStoreError):
        migrations.count_models()
