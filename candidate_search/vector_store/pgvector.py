"""PgVector implementation of the candidate vector store.

Vectors live on the recruiting schema itself: ``candidates.profile_embedding``
holds the profile vector and ``resumes.resume_embedding`` the optional body
vector. Cosine similarity is computed using the ``<=>`` operator and converted
to a ``similarity`` score via ``1 - distance``.

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Every connection registers the pgvector codec so numpy arrays are bound as
  query parameters, never interpolated into SQL
- Queries are funneled through ``_execute_query`` for uniform timeout and
  error handling
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, List, Optional

import asyncpg
from asyncpg import Connection, Pool
import numpy as np
from pgvector.asyncpg import register_vector
import structlog

from .base import (
    CandidateDocument,
    CandidateNotFoundError,
    CandidateVectorStore,
    EmbeddingCoverage,
    SimilarCandidate,
    StorageTimeoutError,
    StorageWriteError,
    StoredVector,
    VectorDimensionMismatchError,
    VectorStoreConnectionError,
    VectorStoreError,
    VectorStoreQueryError,
)

logger = structlog.get_logger("vector_store.pgvector")

_DOCUMENT_COLUMNS = """
    c.id,
    c.full_name,
    COALESCE(c.current_title, '') AS title,
    COALESCE((
        SELECT array_agg(s.skill_name ORDER BY s.skill_name)
        FROM candidate_skills cs
        JOIN skills s ON cs.skill_id = s.id
        WHERE cs.candidate_id = c.id
    ), ARRAY[]::text[]) AS skills,
    COALESCE((
        SELECT string_agg(r.resume_text, ' ')
        FROM resumes r
        WHERE r.candidate_id = c.id
    ), '') AS body_text
"""


class PgVectorStore(CandidateVectorStore):
    """PgVector implementation of the candidate vector store."""

    def __init__(
        self,
        dsn: str,
        vector_dimension: int,
        pool_size: int = 10,
        max_queries: int = 50000,
        command_timeout: float = 30.0,
    ):
        """Configure a PgVector-backed vector store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - vector_dimension: Dimension of the ``profile_embedding`` column
        - pool_size: Max size of asyncpg connection pool
        - max_queries: Queries per connection before recycling
        - command_timeout: Seconds to allow per DB command
        """
        self.dsn = dsn
        self.vector_dimension = vector_dimension
        self.pool_size = pool_size
        self.max_queries = max_queries
        self.command_timeout = command_timeout
        self._pool: Optional[Pool] = None

    @property
    def dimension(self) -> int:
        return self.vector_dimension

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    max_queries=self.max_queries,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created PgVector connection pool", pool_size=self.pool_size)
            except (OSError, asyncpg.PostgresError) as e:
                logger.error("Failed to create PgVector connection pool", error=str(e))
                raise VectorStoreConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _execute_query(
        self,
        query: str,
        *args: Any,
        fetch: bool = False,
        fetch_one: bool = False,
        fetch_val: bool = False
    ) -> Any:
        """Execute a query with timeout and error handling.

        The ``fetch``/``fetch_one``/``fetch_val`` flags control how results are
        retrieved. Timeouts surface as ``StorageTimeoutError``; other failures
        are wrapped in ``VectorStoreQueryError``.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_val:
                    call = conn.fetchval(query, *args)
                elif fetch_one:
                    call = conn.fetchrow(query, *args)
                elif fetch:
                    call = conn.fetch(query, *args)
                else:
                    call = conn.execute(query, *args)
                return await asyncio.wait_for(call, timeout=self.command_timeout)
        except (asyncio.TimeoutError, asyncpg.QueryCanceledError) as e:
            logger.error("Query timed out", query=query, timeout=self.command_timeout)
            raise StorageTimeoutError(f"Query exceeded {self.command_timeout}s") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Query execution failed", query=query, error=str(e))
            raise VectorStoreQueryError(f"Query failed: {e}") from e

    async def initialize(self) -> None:
        """Open the pool and verify the column dimension.

        Raises ``VectorDimensionMismatchError`` when ``profile_embedding`` was
        created for a different model than the one configured.
        """
        column_dimension = await self._execute_query(
            """
            SELECT atttypmod FROM pg_attribute
            WHERE attrelid = 'candidates'::regclass
              AND attname = 'profile_embedding'
              AND NOT attisdropped
            """,
            fetch_val=True
        )

        if column_dimension is None:
            raise VectorDimensionMismatchError(
                "candidates.profile_embedding column is missing; run the embedding migration"
            )

        if column_dimension != self.vector_dimension:
            logger.error(
                "Vector column dimension mismatch",
                column_dimension=column_dimension,
                configured_dimension=self.vector_dimension
            )
            raise VectorDimensionMismatchError(
                f"profile_embedding is vector({column_dimension}) but the configured "
                f"dimension is {self.vector_dimension}; migrate the column and index"
            )

        logger.info("PgVector store initialized", dimension=self.vector_dimension)

    async def store_embedding(
        self,
        entity_id: str,
        vector: np.ndarray,
        model_name: str,
        tokens: Optional[int] = None,
        body_vector: Optional[np.ndarray] = None
    ) -> StoredVector:
        """Overwrite the profile (and optional body) vector for a candidate."""
        vector_array = self._ensure_vector_dimension(vector)
        body_array = self._ensure_vector_dimension(body_vector) if body_vector is not None else None
        generated_at = datetime.now(timezone.utc)
        # Columns are ``timestamp without time zone`` holding UTC.
        generated_at_naive = generated_at.replace(tzinfo=None)

        # Profile and resume vectors commit together or not at all.
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    result = await asyncio.wait_for(
                        conn.execute(
                            """
                            UPDATE candidates
                            SET profile_embedding = $2,
                                embedding_generated_at = $3,
                                embedding_model = $4,
                                embedding_tokens = $5
                            WHERE id = $1::uuid
                            """,
                            entity_id,
                            vector_array,
                            generated_at_naive,
                            model_name,
                            tokens
                        ),
                        timeout=self.command_timeout
                    )
                    if result.split()[-1] == "0":
                        raise CandidateNotFoundError(f"Candidate {entity_id} does not exist")

                    if body_array is not None:
                        await asyncio.wait_for(
                            conn.execute(
                                """
                                UPDATE resumes
                                SET resume_embedding = $2,
                                    embedding_generated_at = $3,
                                    embedding_model = $4
                                WHERE candidate_id = $1::uuid
                                """,
                                entity_id,
                                body_array,
                                generated_at_naive,
                                model_name
                            ),
                            timeout=self.command_timeout
                        )
        except (asyncio.TimeoutError, asyncpg.QueryCanceledError) as e:
            logger.error("Embedding write timed out", entity_id=entity_id, timeout=self.command_timeout)
            raise StorageTimeoutError(f"Storing embedding for {entity_id} exceeded {self.command_timeout}s") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Embedding write failed", entity_id=entity_id, error=str(e))
            raise StorageWriteError(f"Failed to store embedding for {entity_id}: {e}") from e

        logger.info(
            "Stored embedding",
            entity_id=entity_id,
            model_name=model_name,
            with_body=body_array is not None
        )

        return StoredVector(
            entity_id=entity_id,
            vector=vector_array,
            model_name=model_name,
            generated_at=generated_at,
            tokens=tokens
        )

    async def get_embedding(self, entity_id: str) -> Optional[StoredVector]:
        """Get the stored profile vector for a candidate."""
        row = await self._execute_query(
            """
            SELECT profile_embedding, embedding_model, embedding_generated_at, embedding_tokens
            FROM candidates
            WHERE id = $1::uuid AND profile_embedding IS NOT NULL
            """,
            entity_id,
            fetch_one=True
        )

        if not row:
            logger.debug("Embedding not found", entity_id=entity_id)
            return None

        generated_at = row["embedding_generated_at"]
        if generated_at is not None and generated_at.tzinfo is None:
            generated_at = generated_at.replace(tzinfo=timezone.utc)

        return StoredVector(
            entity_id=entity_id,
            vector=np.asarray(row["profile_embedding"], dtype=np.float32),
            model_name=row["embedding_model"] or "",
            generated_at=generated_at,
            tokens=row["embedding_tokens"]
        )

    async def search_similar(
        self,
        query_vector: np.ndarray,
        similarity_threshold: float = 0.0,
        limit: int = 100
    ) -> List[SimilarCandidate]:
        """Search for similar candidates using cosine similarity."""
        vector_array = self._ensure_vector_dimension(query_vector)

        rows = await self._execute_query(
            """
            SELECT c.id, c.current_title,
                   1 - (c.profile_embedding <=> $1) AS similarity
            FROM candidates c
            WHERE c.is_active = true
              AND c.profile_embedding IS NOT NULL
              AND 1 - (c.profile_embedding <=> $1) >= $2
            ORDER BY c.profile_embedding <=> $1
            LIMIT $3
            """,
            vector_array,
            float(similarity_threshold),
            limit,
            fetch=True
        )

        hits = [
            SimilarCandidate(
                entity_id=str(row["id"]),
                similarity=float(row["similarity"]),
                title=row["current_title"]
            )
            for row in rows
        ]

        logger.info(
            "Vector similarity search completed",
            query_vector_dim=len(vector_array),
            threshold=similarity_threshold,
            limit=limit,
            results_count=len(hits)
        )

        return hits

    async def fetch_candidate_document(self, entity_id: str) -> Optional[CandidateDocument]:
        """Fetch title, skill names and resume text in one round trip."""
        row = await self._execute_query(
            f"SELECT {_DOCUMENT_COLUMNS} FROM candidates c WHERE c.id = $1::uuid",
            entity_id,
            fetch_one=True
        )
        if not row:
            return None
        return self._row_to_document(row)

    async def embedding_status(self) -> EmbeddingCoverage:
        row = await self._execute_query(
            """
            SELECT COUNT(*) AS total_active,
                   COUNT(profile_embedding) AS with_embeddings
            FROM candidates
            WHERE is_active = true
            """,
            fetch_one=True
        )
        return EmbeddingCoverage(
            total_candidates=row["total_active"],
            with_embeddings=row["with_embeddings"]
        )

    async def list_missing_embeddings(self, limit: Optional[int] = None) -> List[CandidateDocument]:
        rows = await self._execute_query(
            f"""
            SELECT {_DOCUMENT_COLUMNS}
            FROM candidates c
            WHERE c.is_active = true AND c.profile_embedding IS NULL
            ORDER BY c.id
            LIMIT $1
            """,
            limit,
            fetch=True
        )
        return [self._row_to_document(row) for row in rows]

    async def list_candidates(self, limit: Optional[int] = None) -> List[CandidateDocument]:
        rows = await self._execute_query(
            f"""
            SELECT {_DOCUMENT_COLUMNS}
            FROM candidates c
            WHERE c.is_active = true
            ORDER BY c.id
            LIMIT $1
            """,
            limit,
            fetch=True
        )
        return [self._row_to_document(row) for row in rows]

    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""
        try:
            await self._execute_query("SELECT 1", fetch_val=True)
            return True
        except VectorStoreError as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PgVector connection pool")

    @staticmethod
    def _row_to_document(row) -> CandidateDocument:
        return CandidateDocument(
            entity_id=str(row["id"]),
            title=row["title"],
            skills=list(row["skills"]),
            body_text=row["body_text"],
            full_name=row["full_name"]
        )
