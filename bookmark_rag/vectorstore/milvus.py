from __future__ import annotations

"""Milvus-backed vector store for chunk records."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from bookmark_rag.rag.errors import EmbeddingConfigError
from bookmark_rag.rag.types import VectorMatch, VectorRecord

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = ("user_id", "content_id", "text", "chunk_index")


class MilvusDependencyError(RuntimeError):
    """Raised when Milvus dependencies are missing."""
    pass


@dataclass
class MilvusConfig:
    """Configuration for Milvus connection and indexing."""
    uri: str
    token: str | None
    collection: str
    consistency: str = "Strong"
    index_type: str = "HNSW"
    nlist: int = 1024
    nprobe: int = 10
    hnsw_m: int = 16
    hnsw_ef_construction: int = 200
    hnsw_ef: int = 64
    # Milvus VARCHAR limits count UTF-8 bytes.
    max_text_length: int = 65535


@dataclass
class MilvusVectorStore:
    """Milvus vector store keyed by deterministic chunk ids."""
    config: MilvusConfig
    collection: Any = field(default=None, init=False, repr=False)
    metric: str = field(default="COSINE", init=False)

    def _connect(self) -> None:
        try:
            from pymilvus import connections
        except ImportError as exc:
            raise MilvusDependencyError("pymilvus is required for MilvusVectorStore") from exc
        connections.connect(alias="default", uri=self.config.uri, token=self.config.token)

    def ensure_index(self, dimension: int, metric: str) -> None:
        """Create the collection and vector index when missing."""
        if dimension <= 0:
            raise EmbeddingConfigError("Embedding dimension must be positive")
        self._connect()
        from pymilvus import Collection, CollectionSchema, DataType, FieldSchema, utility

        self.metric = metric.upper()
        if utility.has_collection(self.config.collection):
            self.collection = Collection(
                self.config.collection, consistency_level=self.config.consistency
            )
            existing_dim = self._existing_embedding_dim()
            if existing_dim is not None and existing_dim != dimension:
                raise EmbeddingConfigError(
                    "Milvus collection embedding dimension mismatch: "
                    f"{existing_dim} (collection) vs {dimension} (embedder). "
                    "Use a new MILVUS_COLLECTION."
                )
            logger.info("milvus_collection_exists", extra={"collection": self.config.collection})
            return

        fields = [
            FieldSchema(name="id", dtype=DataType.VARCHAR, is_primary=True, max_length=256),
            FieldSchema(name="user_id", dtype=DataType.VARCHAR, max_length=128),
            FieldSchema(name="content_id", dtype=DataType.VARCHAR, max_length=128),
            FieldSchema(name="chunk_index", dtype=DataType.INT64),
            FieldSchema(name="text", dtype=DataType.VARCHAR, max_length=self.config.max_text_length),
            FieldSchema(name="embedding", dtype=DataType.FLOAT_VECTOR, dim=dimension),
        ]
        schema = CollectionSchema(fields=fields, description="Bookmark content chunks")
        self.collection = Collection(
            self.config.collection,
            schema,
            consistency_level=self.config.consistency,
        )
        self.collection.create_index(field_name="embedding", index_params=self._index_params())
        logger.info(
            "milvus_collection_created",
            extra={"collection": self.config.collection, "dimension": dimension},
        )

    def _index_params(self) -> dict[str, Any]:
        if self.config.index_type.upper() == "HNSW":
            return {
                "index_type": "HNSW",
                "metric_type": self.metric,
                "params": {
                    "M": self.config.hnsw_m,
                    "efConstruction": self.config.hnsw_ef_construction,
                },
            }
        return {
            "index_type": self.config.index_type,
            "metric_type": self.metric,
            "params": {"nlist": self.config.nlist},
        }

    def _search_params(self) -> dict[str, Any]:
        if self.config.index_type.upper() == "HNSW":
            return {"metric_type": self.metric, "params": {"ef": self.config.hnsw_ef}}
        return {"metric_type": self.metric, "params": {"nprobe": self.config.nprobe}}

    def _existing_embedding_dim(self) -> int | None:
        """Read embedding dimension from existing collection schema."""
        for schema_field in self.collection.schema.fields:
            if schema_field.name != "embedding":
                continue
            params = getattr(schema_field, "params", None) or {}
            dim = params.get("dim") if isinstance(params, dict) else None
            try:
                return int(dim) if dim is not None else None
            except (TypeError, ValueError):
                return None
        return None

    def _require_collection(self) -> Any:
        if self.collection is None:
            raise MilvusDependencyError("Milvus collection is not initialized; call ensure_index")
        return self.collection

    def _checked_text(self, record: VectorRecord) -> str:
        text = str(record.metadata.get("text", ""))
        size = len(text.encode("utf-8"))
        if size > self.config.max_text_length:
            raise ValueError(
                f"Chunk {record.id} is {size} bytes, above the {self.config.max_text_length} "
                "byte text field limit"
            )
        return text

    def upsert(self, records: Iterable[VectorRecord]) -> int:
        """Upsert chunk records by primary id."""
        rows = [
            {
                "id": record.id,
                "user_id": str(record.metadata.get("user_id", "")),
                "content_id": str(record.metadata.get("content_id", "")),
                "chunk_index": int(record.metadata.get("chunk_index", 0)),
                "text": self._checked_text(record),
                "embedding": record.vector,
            }
            for record in records
        ]
        if not rows:
            return 0
        collection = self._require_collection()
        collection.upsert(rows)
        collection.flush()
        return len(rows)

    def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Search the embedding field restricted by the filter expression."""
        if top_k <= 0:
            return []
        collection = self._require_collection()
        collection.load()
        results = collection.search(
            data=[vector],
            anns_field="embedding",
            param=self._search_params(),
            limit=top_k,
            expr=build_filter_expr(filter),
            output_fields=list(_SCALAR_FIELDS),
        )
        matches: list[VectorMatch] = []
        for hit in results[0]:
            entity = hit.entity
            metadata = {name: entity.get(name) for name in _SCALAR_FIELDS}
            matches.append(VectorMatch(id=str(hit.id), score=float(hit.score), metadata=metadata))
        return matches

    def delete_many(self, filter: dict[str, Any]) -> int:
        """Delete records matching the filter expression."""
        expr = build_filter_expr(filter)
        if not expr:
            raise EmbeddingConfigError("Delete filter requires at least one field")
        collection = self._require_collection()
        result = collection.delete(expr)
        collection.flush()
        return int(getattr(result, "delete_count", 0) or 0)

    def stats(self) -> dict[str, int | str]:
        """Return collection stats."""
        count = 0
        dimension = 0
        if self.collection is not None:
            count = int(self.collection.num_entities)
            dimension = self._existing_embedding_dim() or 0
        return {
            "backend": "milvus",
            "document_count": count,
            "embedding_dimension": dimension,
            "collection": self.config.collection,
        }


def build_filter_expr(filter: dict[str, Any] | None) -> str | None:
    """Build a Milvus boolean expression from equality filters."""
    if not filter:
        return None
    clauses: list[str] = []
    for key, value in filter.items():
        if key not in _SCALAR_FIELDS:
            raise EmbeddingConfigError(f"Unsupported filter field: {key}")
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise EmbeddingConfigError(f"Unsupported filter value for {key}")
        literal = json.dumps(value) if isinstance(value, str) else str(value)
        clauses.append(f"{key} == {literal}")
    return " and ".join(clauses)
