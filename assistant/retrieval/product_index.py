"""In-memory FAISS indexes over per-product documentation.

Architectural role:
    Default implementation of the `Retriever` protocol. Each known topic gets its
    own index built from `<PRODUCT_DATA_DIR>/<topic_id>.md`, so a topic stage only
    ever sees its own product's documentation.

Indexing pipeline:
    1. Read the markdown document for the topic.
    2. Split it with `split_text` (800-character chunks, 100 characters overlap).
    3. Embed chunks with the `passage:` prefix and L2-normalize.
    4. Store them in an `IndexFlatIP`, so inner product equals cosine similarity.

Query path:
    Queries are embedded with the `query:` prefix; the top-k chunks are returned in
    score order. FAISS search and embedding are blocking and run through
    `asyncio.to_thread`.

Failure handling:
    A missing document skips that topic (logged). Its topic stage then answers
    with the degraded-availability apology instead of failing.
"""

import asyncio
import logging
import os
from typing import Callable, Iterable, Mapping, Sequence

import faiss
import numpy as np

from assistant.core.topics import KNOWN_TOPICS, Topic
from assistant.retrieval.embedding_model import get_model
from assistant.retrieval.retriever import TOP_K


logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
PRODUCT_DATA_DIR = os.getenv("PRODUCT_DATA_DIR", os.path.join(BASE_DIR, "data", "products"))

CHUNK_SIZE = 800
CHUNK_OVERLAP = 100
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", str(TOP_K)))

# Split boundaries from coarse to fine; "" means hard character cuts.
SEPARATORS = ("\n\n", "\n", ". ", " ", "")

Encoder = Callable[[Sequence[str]], np.ndarray]


# =========================================================
# CHUNKING
# =========================================================

def _split_recursive(text: str, chunk_size: int, separators: Sequence[str]) -> list[str]:
    if len(text) <= chunk_size:
        return [text]

    separator = next((s for s in separators if s == "" or s in text), "")

    if separator == "":
        return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]

    parts = text.split(separator)
    parts = [p + separator for p in parts[:-1]] + [parts[-1]]
    finer = separators[separators.index(separator) + 1:]

    pieces: list[str] = []
    for part in parts:
        if not part:
            continue
        if len(part) <= chunk_size:
            pieces.append(part)
        else:
            pieces.extend(_split_recursive(part, chunk_size, finer))
    return pieces


def split_text(text: str, chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> list[str]:
    """Split text into overlapping chunks on the most natural boundary available.

    Args:
        text: Source document.
        chunk_size: Maximum chunk length in characters.
        overlap: Maximum number of trailing characters repeated at the start of the
            next chunk.

    Returns:
        Non-empty, stripped chunks no longer than `chunk_size`.

    Raises:
        ValueError: When `overlap` is not smaller than `chunk_size`.
    """
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    if not text or not text.strip():
        return []

    pieces = _split_recursive(text.strip(), chunk_size, SEPARATORS)

    chunks: list[str] = []
    window: list[str] = []
    length = 0

    for piece in pieces:
        if window and length + len(piece) > chunk_size:
            chunks.append("".join(window).strip())
            # Keep a tail of the previous chunk as overlap, if it fits.
            while window and (length > overlap or length + len(piece) > chunk_size):
                length -= len(window.pop(0))
        window.append(piece)
        length += len(piece)

    if window:
        chunks.append("".join(window).strip())

    return [c for c in chunks if c]


# =========================================================
# EMBEDDING
# =========================================================

def default_encoder(texts: Sequence[str]) -> np.ndarray:
    return get_model().encode(list(texts))


def _encode(encoder: Encoder, texts: Sequence[str], prefix: str) -> np.ndarray:
    vectors = np.asarray(encoder([prefix + t for t in texts]), dtype="float32")
    if vectors.ndim == 1:
        vectors = vectors.reshape(1, -1)
    vectors = np.ascontiguousarray(vectors)
    faiss.normalize_L2(vectors)
    return vectors


# =========================================================
# INDEX
# =========================================================

class ProductIndex:
    """Cosine-similarity index over one product's documentation chunks."""

    def __init__(self, topic_id: str, chunks: Sequence[str], encoder: Encoder | None = None) -> None:
        self.topic_id = topic_id
        self.chunks = list(chunks)
        self._encoder = encoder or default_encoder
        self._index = None

        if self.chunks:
            vectors = _encode(self._encoder, self.chunks, "passage: ")
            self._index = faiss.IndexFlatIP(vectors.shape[1])
            self._index.add(vectors)

    @classmethod
    def from_file(cls, topic_id: str, path: str, encoder: Encoder | None = None) -> "ProductIndex":
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
        chunks = split_text(text)
        logger.info("Indexed %d chunks for topic=%s from %s", len(chunks), topic_id, path)
        return cls(topic_id, chunks, encoder)

    def __len__(self) -> int:
        return len(self.chunks)

    def search(self, query: str, top_k: int = RETRIEVAL_TOP_K) -> list[str]:
        """Return up to `top_k` chunks, best match first."""
        if self._index is None or not query or not query.strip():
            return []

        k = min(top_k, self._index.ntotal)
        query_vector = _encode(self._encoder, [query], "query: ")
        _, ids = self._index.search(query_vector, k)

        return [self.chunks[i] for i in ids[0] if i >= 0]


class ProductRetriever:
    """`Retriever` over a fixed mapping of topic indexes."""

    def __init__(self, indexes: Mapping[str, ProductIndex], top_k: int = RETRIEVAL_TOP_K) -> None:
        self.indexes = dict(indexes)
        self.top_k = top_k

    async def retrieve(self, topic_id: str, query: str) -> list[str]:
        index = self.indexes.get(topic_id)
        if index is None:
            return []
        return await asyncio.to_thread(index.search, query, self.top_k)


async def build_product_retrievers(
    data_dir: str = PRODUCT_DATA_DIR,
    topics: Iterable[Topic] = KNOWN_TOPICS,
    encoder: Encoder | None = None,
) -> dict[str, ProductRetriever]:
    """Build every topic index in parallel and map each topic to its retriever.

    Returns:
        Mapping of topic id -> retriever for topics whose document exists.
        Topics without a document are absent from the mapping.
    """
    topics = tuple(topics)

    async def build(topic: Topic) -> ProductIndex | None:
        path = os.path.join(data_dir, f"{topic.id}.md")
        if not os.path.exists(path):
            logger.warning("No documentation for topic=%s at %s", topic.id, path)
            return None
        return await asyncio.to_thread(ProductIndex.from_file, topic.id, path, encoder)

    built = await asyncio.gather(*(build(t) for t in topics))
    indexes = {t.id: index for t, index in zip(topics, built) if index is not None}

    retriever = ProductRetriever(indexes)
    return {topic_id: retriever for topic_id in indexes}
