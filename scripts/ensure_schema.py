#!/usr/bin/env python3
"""Create the multi-tenant chunk collection and the control-plane tables."""

from __future__ import annotations

import argparse
import asyncio

from tenant_rag import configure_logging, get_settings
from tenant_rag.db import close_db, init_db

from app.infra.weaviate_schema import ensure_vector_schema


async def _generate_tables() -> None:
    settings = get_settings().model_copy(update={"db_generate_schemas": True})
    await init_db(settings)
    await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--skip-vectors", action="store_true", help="Do not touch the vector collection")
    parser.add_argument("--tables", action="store_true", help="Also generate the control-plane tables")
    args = parser.parse_args()

    configure_logging("ensure-schema")
    settings = get_settings()
    if not args.skip_vectors and settings.vector_backend == "weaviate":
        ensure_vector_schema(settings)
    if args.tables:
        asyncio.run(_generate_tables())


if __name__ == "__main__":
    main()
