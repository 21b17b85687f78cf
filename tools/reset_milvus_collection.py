from __future__ import annotations

"""CLI utility to drop and recreate the bookmark chunk collection in Milvus."""

import argparse

from bookmark_rag.app.settings import settings


def main() -> None:
    """Reset the configured Milvus collection using app settings."""
    parser = argparse.ArgumentParser(description="Drop and recreate the Milvus chunk collection.")
    parser.add_argument(
        "--collection",
        default=settings.milvus_collection,
        help="Collection name to reset.",
    )
    args = parser.parse_args()

    try:
        from pymilvus import connections, utility
    except ImportError as exc:
        raise SystemExit("pymilvus is required to reset the collection") from exc

    connections.connect(alias="default", uri=settings.milvus_uri, token=settings.milvus_token)

    if utility.has_collection(args.collection):
        print(f"Dropping collection: {args.collection}")
        utility.drop_collection(args.collection)

    from bookmark_rag.rag.types import EMBEDDING_DIMENSION, SIMILARITY_METRIC
    from bookmark_rag.vectorstore.milvus import MilvusConfig, MilvusVectorStore

    store = MilvusVectorStore(
        config=MilvusConfig(
            uri=settings.milvus_uri,
            token=settings.milvus_token,
            collection=args.collection,
            consistency=settings.milvus_consistency,
            index_type=settings.milvus_index_type,
            nlist=settings.milvus_nlist,
            nprobe=settings.milvus_nprobe,
        )
    )
    store.ensure_index(EMBEDDING_DIMENSION, SIMILARITY_METRIC)
    print(f"Recreated collection: {args.collection} (dim={EMBEDDING_DIMENSION})")


if __name__ == "__main__":
    main()
