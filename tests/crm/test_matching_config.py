# SPDX-License-Identifier: MIT
"""Tests for the per-tenant matching configuration store."""

import pytest

from crm.config import DedupeSettings
from crm.database import DuplicateMatchingConfig
from crm.deduplication import InvalidArgumentError, MatchingConfigStore


@pytest.fixture
def store(db_session):
    return MatchingConfigStore(db_session)


class TestMatchingConfigStore:
    """Test reading and updating matching settings."""

    def test_defaults_when_unset(self, store, ctx):
        config = store.get(ctx, "contacts")
        assert config.entity_type == "contacts"
        assert config.similarity_threshold == 70
        assert config.auto_detection_enabled is True

    def test_defaults_follow_settings(self, db_session, ctx):
        store = MatchingConfigStore(db_session, DedupeSettings(default_threshold=85, default_auto_detection=False))
        config = store.get(ctx, "companies")
        assert config.similarity_threshold == 85
        assert config.auto_detection_enabled is False

    def test_update_creates_row(self, store, ctx, db_session):
        store.update(ctx, "companies", 80, False)

        rows = db_session.query(DuplicateMatchingConfig).all()
        assert len(rows) == 1
        assert rows[0].tenant_id == ctx.tenant_id
        assert rows[0].similarity_threshold == 80

    def test_update_invalidates_cached_value(self, store, ctx):
        assert store.get(ctx, "contacts").similarity_threshold == 70

        store.update(ctx, "contacts", 90, True)
        assert store.get(ctx, "contacts").similarity_threshold == 90

        store.update(ctx, "contacts", 60, False)
        config = store.get(ctx, "contacts")
        assert config.similarity_threshold == 60
        assert config.auto_detection_enabled is False

    def test_settings_are_per_tenant(self, store, ctx, other_ctx):
        store.update(ctx, "contacts", 95, False)

        other = store.get(other_ctx, "contacts")
        assert other.similarity_threshold == 70
        assert other.auto_detection_enabled is True

    def test_settings_are_per_entity_type(self, store, ctx):
        store.update(ctx, "contacts", 95, True)
        assert store.get(ctx, "companies").similarity_threshold == 70

    def test_list_all(self, store, ctx):
        store.update(ctx, "companies", 55, True)

        configs = {c.entity_type: c for c in store.list_all(ctx)}
        assert set(configs) == {"contacts", "companies"}
        assert configs["companies"].similarity_threshold == 55
        assert configs["contacts"].similarity_threshold == 70

    @pytest.mark.parametrize("threshold", [-1, 101, True, 70.5, "70"])
    def test_rejects_invalid_threshold(self, store, ctx, db_session, threshold):
        with pytest.raises(InvalidArgumentError):
            store.update(ctx, "contacts", threshold, True)
        assert db_session.query(DuplicateMatchingConfig).count() == 0

    def test_rejects_unknown_entity_type(self, store, ctx):
        with pytest.raises(InvalidArgumentError):
            store.get(ctx, "widgets")
