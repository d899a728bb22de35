#!/usr/bin/env python3
"""Walk through a short conversation and recall it by meaning.

Uses the hashing embedder (shared words only), so no embedding API is
needed:

    uv run python scripts/demo.py
    uv run python scripts/demo.py --backend sql --db data/demo.db
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import settings
from src.memory.controller import MemoryController
from src.memory.embedding import HashingEmbeddingProvider
from src.memory.sessions import InMemorySessionTracker
from src.memory.store import create_stores

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)

EXCHANGE = [
    ("user", "I want to learn about transformer models"),
    ("assistant", "Transformers rely on self-attention to relate every token to every other"),
    ("user", "How does self-attention scale with sequence length?"),
    ("assistant", "Quadratically, which is why long contexts get expensive"),
    ("user", "Switching topics: any tips for brewing pour-over coffee?"),
    ("assistant", "Use a 1:16 ratio and water just off the boil"),
]


def banner(msg: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {msg}")
    print(f"{'=' * 60}")


async def main(backend: str, db_path: Path | None, query: str, window: int) -> None:
    conversations, messages = create_stores(backend, db_path=db_path)
    controller = MemoryController(
        conversations,
        messages,
        HashingEmbeddingProvider(settings.embedding_dimension),
        InMemorySessionTracker(),
    )

    banner("Recording conversation")
    await controller.start_conversation("demo-user", "Demo chat", {"source": "demo"})
    for role, content in EXCHANGE:
        await controller.add_message("demo-user", role, content)
        print(f"  [{role}] {content}")
    await controller.wait_for_embeddings()

    banner(f"Recalling: {query!r} (window={window})")
    result = await controller.remember_with_context(query, window)
    if result is None:
        print("  Nothing found.")
    else:
        for m in result.before_context:
            print(f"    [{m.role}] {m.content}")
        print(f"  > [{result.matched_message.role}] {result.matched_message.content}")
        for m in result.after_context:
            print(f"    [{m.role}] {m.content}")

    await controller.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--backend", choices=["memory", "sql"], default="memory")
    parser.add_argument("--db", type=Path, default=None, help="SQLite file for --backend sql")
    parser.add_argument("--query", default="coffee brewing tips")
    parser.add_argument("--window", type=int, default=1)
    args = parser.parse_args()
    asyncio.run(main(args.backend, args.db, args.query, args.window))
