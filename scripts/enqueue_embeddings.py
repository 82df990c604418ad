#!/usr/bin/env python3
"""Script to enqueue embedding jobs for candidates.

By default only active candidates without a profile vector are queued; pass
``--all`` after an embedding model change to regenerate every vector.
"""

import argparse
import asyncio
import sys
from typing import Optional

import structlog

from candidate_search.common.config import WorkerConfig
from candidate_search.common.logging import configure_logging
from candidate_search.jobs.base import JobQueue, job_for_document
from candidate_search.jobs.factory import create_job_queue
from candidate_search.vector_store.base import CandidateVectorStore
from candidate_search.vector_store.factory import create_vector_store_from_config

logger = structlog.get_logger("enqueue_embeddings")

SCRIPT_SOURCE = "CLI-EnqueueEmbeddings"


async def enqueue_embeddings(
    store: CandidateVectorStore,
    queue: JobQueue,
    include_existing: bool = False,
    limit: Optional[int] = None,
    max_retries: int = 3
) -> int:
    """Enqueue one job per selected candidate and return the count."""
    if include_existing:
        documents = await store.list_candidates(limit=limit)
    else:
        documents = await store.list_missing_embeddings(limit=limit)

    for document in documents:
        await queue.enqueue(job_for_document(document, SCRIPT_SOURCE, max_retries=max_retries))

    logger.info(
        "Embedding jobs enqueued",
        count=len(documents),
        include_existing=include_existing,
        limit=limit
    )
    return len(documents)


async def _run(args: argparse.Namespace, config: WorkerConfig) -> int:
    store = create_vector_store_from_config(config)
    queue = create_job_queue(config)
    try:
        await store.initialize()
        return await enqueue_embeddings(
            store,
            queue,
            include_existing=args.all,
            limit=args.limit,
            max_retries=config.cs_job_max_retries
        )
    finally:
        await queue.close()
        await store.close()


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Enqueue embedding generation jobs for candidates")
    parser.add_argument("--all", action="store_true", help="Enqueue every active candidate, not only missing ones")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of candidates to enqueue")

    args = parser.parse_args()
    if args.limit is not None and args.limit < 1:
        parser.error("--limit must be a positive integer")

    config = WorkerConfig()
    configure_logging("enqueue_embeddings", config.cs_log_level, config.cs_log_format)

    try:
        count = asyncio.run(_run(args, config))
    except Exception as e:
        logger.error("Failed to enqueue embedding jobs", error=str(e))
        print(f"Failed to enqueue embedding jobs: {e}")
        sys.exit(1)

    print(f"Queued {count} candidates for embedding generation")
    sys.exit(0)


if __name__ == "__main__":
    main()
