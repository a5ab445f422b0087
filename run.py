#!/usr/bin/env python
"""
Run script for the Endgame application.

This script serves as the entry point for the application,
handling initialization and startup of services.
"""

import argparse
import asyncio
import logging

import uvicorn

from endgame.core.db import close_db, init_db
from endgame.services.counter_service import reconcile_all_counters
from endgame.utils.create_tables import create_database_tables


async def reconcile_counters() -> dict[str, int]:
    """Recompute every denormalized counter from its rows."""
    await init_db(create_schema=False)
    try:
        return await reconcile_all_counters()
    finally:
        await close_db()


def main(host: str = "127.0.0.1", port: int = 8000, reload: bool = True,
         workers: int = 4, create_tables: bool = False, reconcile: bool = False) -> None:
    """
    Main entry point for the application.

    Args:
        host: Host to bind the server to.
        port: Port to bind the server to.
        reload: Whether to reload the server on code changes.
        workers: Number of worker processes.
        create_tables: Whether to create database tables.
        reconcile: Repair counters and exit instead of serving.
    """
    # Set up logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Set up the database
    if create_tables:
        asyncio.run(create_database_tables())
        logging.info("Database tables created")

    if reconcile:
        corrected = asyncio.run(reconcile_counters())
        logging.info(f"Counters reconciled: {corrected}")
        return

    # Start the FastAPI application
    logging.info(f"Starting FastAPI application on {host}:{port}")
    uvicorn.run(
        "endgame.main:app",
        host=host,
        port=port,
        reload=reload,
        workers=workers,
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the Endgame application")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind the server to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind the server to")
    parser.add_argument("--no-reload", action="store_false", dest="reload", help="Disable auto-reload")
    parser.add_argument("--workers", type=int, default=4, help="Number of worker processes")
    parser.add_argument("--create-tables", action="store_true", help="Create database tables")
    parser.add_argument("--reconcile-counters", action="store_true", help="Repair denormalized counters and exit")

    args = parser.parse_args()
    main(
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers,
        create_tables=args.create_tables,
        reconcile=args.reconcile_counters,
    )
