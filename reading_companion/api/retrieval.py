"""
Book Retrieval: Embeddings • Section Lookup • Context Assembly
==============================================================

Overview
--------
Builds the grounded context of a reader query from two sources:

1. the literal text of the section the reader has open (relational chunk store),
   probing the neighbouring indices when the exact one is missing;
2. the nearest passages of the same book in a LlamaIndex vector store.

The result is an ordered, de-duplicated list of `RetrievedPassage` objects,
current section first. Retrieval never aborts a request: embedding or vector
store failures surface as `RetrievalError` inside `EmbeddingClient` and are
absorbed by `ContextRetriever`, which returns whatever it already gathered.

Main Components
---------------
- load_vector_index    : Open a persisted LlamaIndex (or an empty in-memory one).
- EmbeddingClient      : Query embedding + book-scoped top-K lookup.
- ChunkStoreAccessor   : Section text by (book, index) with off-by-one probing.
- ContextRetriever     : Combines both into the passage list.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from llama_index.core import StorageContext, load_index_from_storage
from llama_index.core.base.embeddings.base import BaseEmbedding
from llama_index.core.vector_stores.types import (
    BasePydanticVectorStore,
    MetadataFilter,
    MetadataFilters,
    VectorStoreQuery,
)
from llama_index.embeddings.openai import OpenAIEmbedding
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reading_companion.api.models import RAGContext
from reading_companion.database.daos.book_chunk_dao import BookChunkDao
from reading_companion.database.helpers.transactionManagement import transactional

logger = logging.getLogger(__name__)


class RetrievalError(Exception):
    """Embedding or nearest-neighbour lookup failed."""


@dataclass
class ScoredChunk:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievedPassage:
    """
    One passage of grounded context.

    Attributes:
        section_index (int): Index of the book section the text comes from.
        text (str): Literal passage text.
        is_current (bool): True for the section the reader has open.
        score (float | None): Similarity score for related passages.
    """
    section_index: int
    text: str
    is_current: bool = False
    score: Optional[float] = None

    @property
    def label(self) -> str:
        kind = "Current Section" if self.is_current else "Related Section"
        return f"[{kind} {self.section_index}]"

    def render(self) -> str:
        return f"{self.label}\n{self.text}"


def load_vector_index(persist_dir: Optional[str], embedding: BaseEmbedding):
    """
    Open a persisted LlamaIndex from disk.

    Args:
        persist_dir (str | None): Directory containing the persisted index. When None,
            an empty in-memory storage context is used.
        embedding: Embedding model instance used by LlamaIndex for query encoding.

    Returns:
        tuple: ``(vector_store, docstore)`` of the loaded index.
    """
    if persist_dir is None:
        storage_context = StorageContext.from_defaults()
        return storage_context.vector_store, storage_context.docstore
    storage_context = StorageContext.from_defaults(persist_dir=persist_dir)
    index = load_index_from_storage(storage_context=storage_context, embed_model=embedding)
    return index.vector_store, index.docstore


class EmbeddingClient:
    """
    Query embedding and book-scoped nearest-neighbour lookup.

    Args:
        embed_model (BaseEmbedding): LlamaIndex embedding model (OpenAIEmbedding in production).
        vector_store (BasePydanticVectorStore): Store holding one node per book section, with
            ``book_id``, ``chunk_index`` (and optionally ``reader_id``) in its metadata.
        docstore: Optional document store used to resolve node ids when the vector
            store keeps embeddings only (``SimpleVectorStore``).
    """

    def __init__(self, embed_model: BaseEmbedding, vector_store: BasePydanticVectorStore, docstore=None):
        self.embed_model = embed_model
        self.vector_store = vector_store
        self.docstore = docstore

    @classmethod
    def from_settings(cls, settings) -> "EmbeddingClient":
        embed_model = OpenAIEmbedding(model=settings.EMBEDDING_MODEL, api_key=settings.OPENAI_API_KEY)
        vector_store, docstore = load_vector_index(settings.VECTOR_INDEX_DIR, embed_model)
        return cls(embed_model, vector_store, docstore)

    async def embed(self, text: str) -> List[float]:
        try:
            return await self.embed_model.aget_query_embedding(text)
        except Exception as e:
            raise RetrievalError(f"Embedding failed: {e}") from e

    async def query(
        self,
        vector: List[float],
        book_id: int,
        top_k: int,
        reader_id: Optional[str] = None,
    ) -> List[ScoredChunk]:
        """
        Top-K nearest sections of `book_id` (and `reader_id` when given).

        Results from any other book are dropped even if the store ignores filters.
        """
        if top_k <= 0:
            return []
        filters = [MetadataFilter(key="book_id", value=book_id)]
        if reader_id:
            filters.append(MetadataFilter(key="reader_id", value=reader_id))
        store_query = VectorStoreQuery(
            query_embedding=vector,
            similarity_top_k=top_k,
            filters=MetadataFilters(filters=filters),
        )
        try:
            result = await self.vector_store.aquery(store_query)
        except Exception as e:
            raise RetrievalError(f"Vector store query failed: {e}") from e

        ids = list(result.ids or [])
        similarities = list(result.similarities or [])
        nodes = result.nodes
        if nodes is None:
            nodes = [self._lookup(node_id) for node_id in ids]

        chunks = []
        for position, node in enumerate(nodes):
            if node is None:
                continue
            metadata = dict(node.metadata or {})
            if str(metadata.get("book_id")) != str(book_id):
                continue
            metadata.setdefault("content", node.get_content())
            score = similarities[position] if position < len(similarities) else 0.0
            chunks.append(ScoredChunk(id=node.node_id, score=score, metadata=metadata))
        return chunks

    async def search(self, text: str, book_id: int, top_k: int, reader_id: Optional[str] = None) -> List[ScoredChunk]:
        vector = await self.embed(text)
        return await self.query(vector, book_id, top_k, reader_id)

    def _lookup(self, node_id: str):
        if self.docstore is None:
            return None
        return self.docstore.get_node(node_id, raise_error=False)


class ChunkStoreAccessor:
    """
    Literal section text by (book, index), read through `BookChunkDao`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.chunk_dao = BookChunkDao()

    @transactional
    async def get_chunk(self, book_id: int, chunk_index: int, session: AsyncSession = None) -> Optional[str]:
        return await self.chunk_dao.fetchChunkContent(session, book_id, chunk_index)

    async def get_current_section(self, book_id: int, chunk_index: int) -> Optional[RetrievedPassage]:
        """
        Fetch the reader's current section, retrying at index-1 then index+1.

        Upstream indexing may be off by one; the passage is tagged with the index
        the text was actually found at. Returns None when every probe misses.
        """
        for probe in (chunk_index, chunk_index - 1, chunk_index + 1):
            if probe < 0:
                continue
            content = await self.get_chunk(book_id, probe)
            if content:
                if probe != chunk_index:
                    logger.warning(
                        "Section %s of book %s not found; using neighbouring section %s", chunk_index, book_id, probe
                    )
                return RetrievedPassage(section_index=probe, text=content, is_current=True)
        logger.warning("Section %s of book %s not found (neighbours probed)", chunk_index, book_id)
        return None


class ContextRetriever:
    """
    Combine the current section with similar passages into one ordered list.

    Args:
        chunk_store (ChunkStoreAccessor): Source of the current section text.
        embedding_client (EmbeddingClient): Source of related passages.
        max_chunks (int): Total passage budget, constant whether or not the current
            section was found.
        personalized (bool): Also scope the nearest-neighbour lookup by reader.
    """

    def __init__(
        self,
        chunk_store: ChunkStoreAccessor,
        embedding_client: EmbeddingClient,
        max_chunks: int = 5,
        personalized: bool = True,
    ):
        self.chunk_store = chunk_store
        self.embedding_client = embedding_client
        self.max_chunks = max_chunks
        self.personalized = personalized

    async def retrieve(self, query: str, context: RAGContext) -> List[RetrievedPassage]:
        passages: List[RetrievedPassage] = []
        seen = set()

        if context.current_section_index is not None:
            seen.add(context.current_section_index)
            try:
                current = await self.chunk_store.get_current_section(context.book_id, context.current_section_index)
            except Exception:
                logger.exception("Current section lookup failed for book %s", context.book_id)
                current = None
            if current is not None:
                passages.append(current)
                seen.add(current.section_index)

        top_k = self.max_chunks - (1 if passages else 0)
        reader_id = context.reader_id if self.personalized else None
        try:
            related = await self.embedding_client.search(query, context.book_id, top_k, reader_id)
        except RetrievalError as e:
            logger.warning("Similarity search unavailable for book %s, continuing with %d passage(s): %s",
                           context.book_id, len(passages), e)
            return passages

        for chunk in related:
            section_index = chunk.metadata.get("chunk_index")
            if section_index is None:
                continue
            section_index = int(section_index)
            if section_index in seen:
                continue
            seen.add(section_index)
            passages.append(
                RetrievedPassage(
                    section_index=section_index,
                    text=str(chunk.metadata.get("content", "")),
                    score=chunk.score,
                )
            )
        logger.info("Retrieved %d passage(s) for book %s", len(passages), context.book_id)
        return passages
