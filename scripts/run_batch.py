"""CLI script to index stored messages that were never ingested."""

import argparse
import asyncio
import logging

from rapport.ingestion.pipeline import IngestionPipeline

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def run(args):
    pipeline = IngestionPipeline()
    try:
        result = await pipeline.backfill(conversation_id=args.conversation, limit=args.limit)
    finally:
        await pipeline.llm.close()

    logger.info("Result: %s", result)


def main():
    parser = argparse.ArgumentParser(description="Rapport index backfill")
    parser.add_argument(
        "--conversation",
        type=str,
        default=None,
        help="Only backfill this conversation id",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Limit number of messages to index",
    )

    args = parser.parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
