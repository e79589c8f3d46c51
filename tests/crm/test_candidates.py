# SPDX-License-Identifier: MIT
"""Tests for trigram candidate generation."""

import uuid

import pytest
from sqlalchemy.dialects import postgresql

from crm.config import DedupeSettings
from crm.deduplication.candidates import CandidateGenerator, TrigramIndex
from crm.deduplication.models import CandidateRecord
from crm.deduplication.profiles import COMPANY_PROFILE, CONTACT_PROFILE


def record(primary: str = "", secondary: str = "", entity_id=None) -> CandidateRecord:
    return CandidateRecord(entity_id=entity_id or uuid.uuid4(), tenant_id=None, primary=primary, secondary=secondary)


class TestTrigramIndex:
    """Test the in-memory inverted trigram index."""

    def test_finds_name_variant(self):
        target = record("Jonathan Smith", "jsmith@example.com")
        index = TrigramIndex([target, record("Zed Quux", "zq@other.org")], CONTACT_PROFILE)

        result = index.candidates(record("Jon Smith"), min_similarity=0.35, limit=50)
        assert [r.entity_id for r in result] == [target.entity_id]

    def test_query_never_returns_itself(self):
        me = record("Jon Smith", "jon@example.com")
        twin = record("Jon Smith", "jon@example.com")
        index = TrigramIndex([me, twin], CONTACT_PROFILE)

        result = index.candidates(me, min_similarity=0.35, limit=50)
        assert [r.entity_id for r in result] == [twin.entity_id]

    def test_secondary_only_query(self):
        target = record("J. Smith", "jon.smith@example.com")
        index = TrigramIndex([target], CONTACT_PROFILE)

        result = index.candidates(record("", "Jon.Smith@example.com"), min_similarity=0.35, limit=50)
        assert result == [target]

    def test_empty_query_has_no_candidates(self):
        index = TrigramIndex([record("Jon Smith", "jon@example.com")], CONTACT_PROFILE)
        assert index.candidates(record("", ""), min_similarity=0.0, limit=50) == []

    def test_limit_keeps_best(self):
        exact = record("Maria Garcia")
        close = record("Maria Garcias")
        index = TrigramIndex([close, exact, record("Mario Garcia")], CONTACT_PROFILE)

        result = index.candidates(record("Maria Garcia"), min_similarity=0.1, limit=1)
        assert result == [exact]

    def test_ties_at_limit_are_kept(self):
        twins = [record("John Smith", f"john{i}@example.com") for i in range(6)]
        index = TrigramIndex([*twins, record("John Smyth")], CONTACT_PROFILE)

        result = index.candidates(twins[0], min_similarity=0.1, limit=2)

        assert {r.entity_id for r in result} == {t.entity_id for t in twins[1:]}

    def test_company_domain_is_normalized(self):
        target = record("Acme Incorporated", "https://www.acme.com")
        index = TrigramIndex([target], COMPANY_PROFILE)

        result = index.candidates(record("", "acme.com"), min_similarity=0.35, limit=50)
        assert result == [target]

    def test_common_trigrams_skipped_for_lookup(self):
        """Grams shared by more records than the cap do not pull in candidates."""
        jon = record("Jon Smith")
        others = [record(f"{first} Smith") for first in ("Ann", "Bea", "Cy", "Dee", "Eve")]
        index = TrigramIndex([jon, *others], CONTACT_PROFILE, max_posting_size=2)

        result = index.candidates(record("Jon Smith"), min_similarity=0.35, limit=50)
        assert [r.entity_id for r in result] == [jon.entity_id]

    def test_falls_back_to_rarest_common_trigram(self):
        records = [record(f"{first} Smith") for first in ("Ann", "Bea", "Cy")]
        index = TrigramIndex(records, CONTACT_PROFILE, max_posting_size=1)

        result = index.candidates(record("Smith"), min_similarity=0.35, limit=50)
        assert len(result) == 3


class TestCandidateGenerator:
    """Test candidate generation against the record store."""

    def test_prefilter_is_half_the_threshold(self, db_session):
        generator = CandidateGenerator(db_session, CONTACT_PROFILE, DedupeSettings())
        assert generator.prefilter_similarity(70) == pytest.approx(0.35)
        assert generator.prefilter_similarity(100) == pytest.approx(0.5)

    def test_load_active_scopes_tenant_and_tombstones(self, db_session, ctx, other_ctx, make_contact):
        active = make_contact("Jon", "Smith", "jon@example.com")
        survivor = make_contact("Jonathan", "Smith")
        make_contact("Jon", "Smith", merged_into_id=survivor.id)
        make_contact("Jon", "Smith", tenant_id=other_ctx.tenant_id)

        generator = CandidateGenerator(db_session, CONTACT_PROFILE)
        loaded = generator.load_active(ctx)

        assert [r.entity_id for r in loaded] == [active.id, survivor.id]
        assert loaded[0].primary == "Jon Smith"
        assert loaded[0].secondary == "jon@example.com"

    def test_for_query_excludes_record_being_edited(self, db_session, ctx, make_contact):
        editing = make_contact("Jon", "Smith", "jon@example.com")
        other = make_contact("Jon", "Smith", "jon@example.com")

        generator = CandidateGenerator(db_session, CONTACT_PROFILE)
        query = CONTACT_PROFILE.candidate({"first_name": "Jon", "last_name": "Smith"})
        result = generator.for_query(ctx, query, threshold=70, exclude_id=editing.id)

        assert [r.entity_id for r in result] == [other.id]

    def test_for_snapshot_yields_every_record(self, db_session, ctx, make_contact):
        make_contact("Jon", "Smith")
        make_contact("Jonathan", "Smith")
        make_contact("Zed", "Quux")

        generator = CandidateGenerator(db_session, CONTACT_PROFILE)
        snapshot = generator.load_active(ctx)
        pairs = dict((r.entity_id, c) for r, c in generator.for_snapshot(snapshot, threshold=70))

        assert len(pairs) == 3
        assert pairs[snapshot[2].entity_id] == []
        assert [c.entity_id for c in pairs[snapshot[0].entity_id]] == [snapshot[1].entity_id]


class TestPostgresPrefilter:
    """The real-time prefilter moves into PostgreSQL when it is available."""

    @pytest.fixture
    def pg_session(self, mocker):
        session = mocker.Mock()
        session.get_bind.return_value.dialect.name = "postgresql"
        session.execute.return_value = []
        return session

    def test_enabled_by_default_on_postgresql(self, pg_session):
        assert CandidateGenerator(pg_session, CONTACT_PROFILE, DedupeSettings())._use_pg_trgm() is True

    def test_can_be_switched_off(self, pg_session):
        config = DedupeSettings(use_pg_trgm=False)
        assert CandidateGenerator(pg_session, CONTACT_PROFILE, config)._use_pg_trgm() is False

    def test_never_on_sqlite(self, db_session):
        config = DedupeSettings(use_pg_trgm=True)
        assert CandidateGenerator(db_session, CONTACT_PROFILE, config)._use_pg_trgm() is False

    def test_contact_statement_compiles(self, ctx):
        generator = CandidateGenerator(None, CONTACT_PROFILE, DedupeSettings())
        query = CONTACT_PROFILE.candidate({"first_name": "Jon", "last_name": "Smith", "email": "Jon@Example.com"})
        excluded = uuid.uuid4()

        stmt = generator.pg_trgm_statement(ctx, query, 0.35, exclude_id=excluded)
        sql = str(stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))

        assert "contacts.first_name || ' '" in sql
        assert "|| contacts.last_name" in sql
        assert "similarity(contacts.email, 'jon@example.com')" in sql
        assert "contacts.merged_into_id IS NULL" in sql
        assert "LIMIT 50" in sql
        assert excluded.hex in sql.replace("-", "")

    def test_company_statement_compiles(self, ctx):
        generator = CandidateGenerator(None, COMPANY_PROFILE, DedupeSettings())
        query = COMPANY_PROFILE.candidate({"name": "Acme", "website": "https://www.acme.com"})

        stmt = generator.pg_trgm_statement(ctx, query, 0.35)
        sql = str(stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))

        assert "similarity(companies.name, 'Acme')" in sql
        assert "similarity(companies.website, 'acme.com')" in sql

    def test_for_query_sets_threshold_then_queries(self, pg_session, ctx):
        generator = CandidateGenerator(pg_session, CONTACT_PROFILE, DedupeSettings())
        query = CONTACT_PROFILE.candidate({"first_name": "Jon", "last_name": "Smith"})

        assert generator.for_query(ctx, query, threshold=70) == []
        assert pg_session.execute.call_count == 2
