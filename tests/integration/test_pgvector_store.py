"""Integration tests for the PgVector store and the client config table.

Each run creates a throwaway schema holding just the columns the store
reads, so the tests never touch an existing recruiting database.
"""

import uuid

import asyncpg
import pytest
import pytest_asyncio

from candidate_search.common.config import BaseConfig
from candidate_search.search.tenant_config import PgScoringConfigStore, ScoringConfig, TenantConfigResolver
from candidate_search.vector_store.base import CandidateNotFoundError, VectorDimensionMismatchError
from candidate_search.vector_store.pgvector import PgVectorStore

from ..conftest import DIMENSION, as_vector, unit_vector

ADA = "00000000-0000-0000-0000-000000000001"
GRACE = "00000000-0000-0000-0000-000000000002"
RETIRED = "00000000-0000-0000-0000-000000000003"


def _schema_sql(schema: str) -> str:
    return f"""
    CREATE SCHEMA {schema};
    SET search_path TO {schema}, public;
    CREATE TABLE candidates (
        id uuid PRIMARY KEY,
        full_name text,
        current_title text,
        is_active boolean NOT NULL DEFAULT true,
        profile_embedding vector({DIMENSION}),
        embedding_generated_at timestamp,
        embedding_model text,
        embedding_tokens integer
    );
    CREATE TABLE skills (id serial PRIMARY KEY, skill_name text NOT NULL);
    CREATE TABLE candidate_skills (candidate_id uuid NOT NULL, skill_id integer NOT NULL);
    CREATE TABLE resumes (
        candidate_id uuid NOT NULL,
        resume_text text,
        resume_embedding vector({DIMENSION}),
        embedding_generated_at timestamp,
        embedding_model text
    );
    CREATE TABLE client_config (
        client_id text NOT NULL,
        config_key text NOT NULL,
        config_value text,
        config_type text,
        updated_at timestamp DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (client_id, config_key)
    );
    INSERT INTO candidates (id, full_name, current_title, is_active) VALUES
        ('{ADA}', 'Ada Lovelace', 'Senior Python Developer', true),
        ('{GRACE}', 'Grace Hopper', 'Data Engineer', true),
        ('{RETIRED}', 'Old Profile', 'Python Developer', false);
    INSERT INTO skills (skill_name) VALUES ('Python'), ('Django');
    INSERT INTO candidate_skills (candidate_id, skill_id) VALUES ('{ADA}', 1), ('{ADA}', 2);
    INSERT INTO resumes (candidate_id, resume_text) VALUES ('{ADA}', 'Built Django services');
    """


def _with_search_path(dsn: str, schema: str) -> str:
    separator = "&" if "?" in dsn else "?"
    return f"{dsn}{separator}search_path={schema},public"


@pytest_asyncio.fixture
async def schema_dsn():
    dsn = BaseConfig().cs_db_dsn
    try:
        conn = await asyncpg.connect(dsn, timeout=5)
    except (OSError, asyncpg.PostgresError):
        pytest.skip("PostgreSQL not available")

    schema = f"cs_test_{uuid.uuid4().hex[:12]}"
    try:
        await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        await conn.execute(_schema_sql(schema))
        yield _with_search_path(dsn, schema)
    finally:
        await conn.execute(f"DROP SCHEMA IF EXISTS {schema} CASCADE")
        await conn.close()


@pytest.mark.integration
class TestPgVectorStore:

    @pytest.mark.asyncio
    async def test_initialize_checks_dimension(self, schema_dsn):
        store = PgVectorStore(schema_dsn, vector_dimension=DIMENSION + 1)
        try:
            with pytest.raises(VectorDimensionMismatchError):
                await store.initialize()
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_store_search_and_status(self, schema_dsn):
        store = PgVectorStore(schema_dsn, vector_dimension=DIMENSION)
        try:
            await store.initialize()
            assert await store.health_check() is True

            await store.store_embedding(ADA, as_vector(unit_vector(0)), "stub-embedder", tokens=11)
            await store.store_embedding(RETIRED, as_vector(unit_vector(0)), "stub-embedder")
            with pytest.raises(CandidateNotFoundError):
                await store.store_embedding(str(uuid.uuid4()), as_vector(unit_vector(0)), "stub-embedder")

            stored = await store.get_embedding(ADA)
            assert stored.model_name == "stub-embedder"
            assert stored.tokens == 11
            assert stored.generated_at.tzinfo is not None

            hits = await store.search_similar(as_vector(unit_vector(0)), similarity_threshold=0.5, limit=10)
            assert [hit.entity_id for hit in hits] == [ADA]
            assert hits[0].similarity == pytest.approx(1.0, abs=1e-5)

            document = await store.fetch_candidate_document(ADA)
            assert document.title == "Senior Python Developer"
            assert document.skills == ["Django", "Python"]
            assert document.body_text == "Built Django services"

            status = await store.embedding_status()
            assert (status.total_candidates, status.with_embeddings) == (2, 1)
            missing = await store.list_missing_embeddings()
            assert [document.entity_id for document in missing] == [GRACE]
        finally:
            await store.close()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_scoring_config_round_trip(schema_dsn):
    config_store = PgScoringConfigStore(schema_dsn)
    resolver = TenantConfigResolver(config_store)
    try:
        await config_store.upsert_rows("GLOBAL", {"search.similarity_threshold": "0.4"})
        updated = await resolver.update("acme", ScoringConfig(
            strategy_name="option4",
            semantic_weight=0.5,
            keyword_weight=0.5,
            similarity_threshold=0.2
        ))
        assert updated.strategy_name == "tiered_multi_keyword"
        assert updated.similarity_threshold == 0.2

        assert (await resolver.resolve("other")).similarity_threshold == 0.4
    finally:
        await config_store.close()
