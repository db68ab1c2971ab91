import argparse
import asyncio
import json
import logging
from pathlib import Path

from ai_responder.domain.models import BusinessContextSnapshot
from ai_responder.rag.embedder import LocalEmbedder
from ai_responder.rag.knowledge_store import InMemoryKnowledgeStore, SupabaseKnowledgeStore, index_snapshot
from ai_responder.registry.supabase_connector import SupabaseConfigError, create_supabase_client_from_env


def _store():
    try:
        return SupabaseKnowledgeStore(create_supabase_client_from_env())
    except SupabaseConfigError:
        logging.warning(json.dumps({"event": "supabase_not_configured", "store": "in_memory"}))
        return InMemoryKnowledgeStore()


async def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    parser = argparse.ArgumentParser(description="Embed a business snapshot into the knowledge store.")
    parser.add_argument("--snapshot", type=Path, default=Path("data/sample_business.json"))
    parser.add_argument("--model-path", type=str, default=None)
    args = parser.parse_args()

    snapshot = BusinessContextSnapshot.from_dict(json.loads(args.snapshot.read_text(encoding="utf-8")))
    embedder = LocalEmbedder(model_path=args.model_path) if args.model_path else LocalEmbedder()
    count = await index_snapshot(snapshot, embedder=embedder, store=_store())
    print(json.dumps({"tenant_id": snapshot.tenant_id, "documents": count}, ensure_ascii=False))


if __name__ == "__main__":
    asyncio.run(main())
