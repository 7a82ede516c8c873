"""
Main entry point for the application.
Ingests a knowledge graph export or gathers the context for a question.
"""
import argparse
import asyncio
import json
import logging
import sys
import uuid

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _ingest(args: argparse.Namespace) -> int:
    from knowledge_base.db import MilvusGraphStore
    from knowledge_base.ingestion import ingest_graph

    store = MilvusGraphStore()
    store.connect()
    try:
        if args.reset:
            store.drop_collections()
        count = await ingest_graph(args.path, store)
    finally:
        store.close()

    logger.info(f"Stored {count} nodes")
    return 0


async def _ask(args: argparse.Namespace) -> int:
    from contextualiser.graph import run_contextualiser
    from contextualiser.memory import ConversationMemory
    from contextualiser.notifications import RedisNotifier
    from contextualiser.tools import OllamaScorer, Toolkit
    from knowledge_base.db import MilvusGraphStore

    store = MilvusGraphStore()
    store.connect()
    tools = Toolkit(scorer=OllamaScorer(), concepts=store, atomic_facts=store, chunks=store)
    limits = {"document_ids": args.document} if args.document else None

    try:
        response = await run_contextualiser(
            args.question,
            args.session,
            tools,
            user_id=args.user,
            notifier=RedisNotifier() if args.user else None,
            memory=ConversationMemory(args.session),
            limits=limits,
            use_vector=args.vector,
        )
    finally:
        store.close()

    print(json.dumps(response, indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="contextualiser", description="Graph contextualiser")
    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser("ingest", help="Load a JSON knowledge graph export into Milvus")
    ingest.add_argument("path", help="Path to the graph export")
    ingest.add_argument("--reset", action="store_true", help="Drop existing collections first")
    ingest.set_defaults(handler=_ingest)

    ask = commands.add_parser("ask", help="Gather the context needed to answer a question")
    ask.add_argument("question")
    ask.add_argument("--session", default=None, help="Session id (a new one by default)")
    ask.add_argument("--user", default=None, help="User id, enables progress notifications")
    ask.add_argument("--vector", action="store_true", help="Start from vector similarity over chunks")
    ask.add_argument("--document", action="append", help="Restrict vector search to a document id")
    ask.set_defaults(handler=_ask)

    return parser


def main(argv=None) -> int:
    """Start the application."""
    args = build_parser().parse_args(argv)
    if getattr(args, "session", "") is None:
        args.session = str(uuid.uuid4())

    try:
        return asyncio.run(args.handler(args))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
