"""Admin CLI: index documents into the vector store and purge old rate windows."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

from ragchat.config import Settings, get_settings
from ragchat.dependencies import build_document_store, build_embedder, build_rate_limiter
from ragchat.embeddings import ChromaDocumentStore
from ragchat.errors import InvalidInput, RagChatError
from ragchat.metrics.observability import get_logger
from ragchat.models import Document

LOGGER = get_logger("cli")


def load_documents(path: Path) -> list[Document]:
    """Read ``{"documents": [{"id", "title", "content"}, ...]}`` (or a bare list)."""

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise InvalidInput(f"cannot read {path}: {exc}") from exc
    items = data.get("documents") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise InvalidInput(f"{path} holds no document list")
    documents: list[Document] = []
    for position, item in enumerate(items):
        if not isinstance(item, dict) or "id" not in item or not isinstance(item.get("content"), str):
            raise InvalidInput(f"document #{position} needs an id and string content")
        documents.append(Document(id=str(item["id"]), title=str(item.get("title") or ""), content=item["content"]))
    return documents


def index_documents(path: Path, *, settings: Settings) -> int:
    embedder = build_embedder(settings)
    store = build_document_store(settings, embedder.model)
    if not isinstance(store, ChromaDocumentStore):
        raise SystemExit("indexing is only supported for the chroma document store")
    documents = [
        Document(id=doc.id, title=doc.title, content=doc.content, embedding=embedder.embed(doc.content))
        for doc in load_documents(path)
    ]
    ids = store.upsert(documents)
    LOGGER.info("cli.indexed", count=len(ids), collection=settings.chroma_collection)
    return len(ids)


def purge_rate_limits(*, settings: Settings, retention_seconds: float) -> int:
    removed = build_rate_limiter(settings).purge_stale(retention_seconds)
    LOGGER.info("cli.purged", removed=removed, retention_seconds=retention_seconds)
    return removed


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ragchat administration commands.")
    commands = parser.add_subparsers(dest="command", required=True)

    index = commands.add_parser("index", help="Embed documents from a JSON file and upsert them")
    index.add_argument("path", type=Path, help="JSON file with documents (id, title, content)")

    purge = commands.add_parser("purge-rate-limits", help="Delete rate windows older than the retention horizon")
    purge.add_argument("--retention-seconds", type=float, default=3600.0, help="Keep windows newer than this")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = get_settings()
    try:
        if args.command == "index":
            count = index_documents(args.path, settings=settings)
            print(json.dumps({"indexed": count}))
        else:
            removed = purge_rate_limits(settings=settings, retention_seconds=args.retention_seconds)
            print(json.dumps({"purged": removed}))
    except RagChatError as exc:
        print(f"{exc.kind}: {exc.detail}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
