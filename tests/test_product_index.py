import asyncio

import numpy as np
import pytest

from assistant.core.topics import TOPICS_BY_ID
from assistant.retrieval.product_index import (
    ProductIndex,
    ProductRetriever,
    build_product_retrievers,
    split_text,
)
from assistant.retrieval.retriever import retrieve_context


VOCAB = ["port", "dues", "crew", "wages", "supplier", "rfq", "currency"]


def keyword_encoder(texts):
    """Deterministic bag-of-words embedding over a tiny vocabulary."""
    vectors = []
    for text in texts:
        words = text.lower().replace(".", " ").replace("?", " ").split()
        vectors.append([float(words.count(w)) for w in VOCAB] + [0.01])
    return np.array(vectors, dtype="float32")


# =========================================================
# Chunking
# =========================================================

def test_split_text_short_document_is_one_chunk():
    assert split_text("  Short document.  ") == ["Short document."]


def test_split_text_blank_document():
    assert split_text("") == []
    assert split_text(" \n\n ") == []


def test_split_text_respects_chunk_size():
    paragraphs = [f"Paragraph {i} " + "word " * 30 for i in range(20)]
    text = "\n\n".join(p.strip() for p in paragraphs)

    chunks = split_text(text, chunk_size=300, overlap=60)

    assert len(chunks) > 1
    assert all(0 < len(c) <= 300 for c in chunks)
    for i in range(20):
        assert any(f"Paragraph {i} " in c for c in chunks)


def test_split_text_hard_cuts_unbroken_text():
    chunks = split_text("x" * 2000, chunk_size=800, overlap=100)

    assert all(len(c) <= 800 for c in chunks)
    assert sum(len(c) for c in chunks) >= 2000


def test_split_text_rejects_overlap_not_below_size():
    with pytest.raises(ValueError):
        split_text("abc", chunk_size=100, overlap=100)


# =========================================================
# Index and retriever
# =========================================================

def test_product_index_ranks_best_match_first():
    chunks = [
        "Port dues are benchmarked per port.",
        "Crew wages are paid monthly.",
        "Send an RFQ to each supplier.",
    ]
    index = ProductIndex("da-desk", chunks, encoder=keyword_encoder)

    assert len(index) == 3
    assert index.search("What are port dues?", top_k=1) == ["Port dues are benchmarked per port."]
    assert index.search("crew wages", top_k=2)[0] == "Crew wages are paid monthly."
    assert len(index.search("port", top_k=10)) == 3


def test_product_index_empty_inputs():
    empty = ProductIndex("da-desk", [], encoder=keyword_encoder)

    assert empty.search("port dues") == []
    assert ProductIndex("da-desk", ["port"], encoder=keyword_encoder).search("   ") == []


def test_product_retriever_scopes_by_topic():
    retriever = ProductRetriever({
        "martrust": ProductIndex("martrust", ["Crew wages in any currency."], encoder=keyword_encoder),
    })

    assert asyncio.run(retriever.retrieve("martrust", "crew wages")) == ["Crew wages in any currency."]
    assert asyncio.run(retriever.retrieve("shipserv", "crew wages")) == []


def test_retrieve_context_joins_passages():
    retriever = ProductRetriever({
        "da-desk": ProductIndex("da-desk", ["Port dues.", "Port agent fees."], encoder=keyword_encoder),
    }, top_k=2)

    context = asyncio.run(retrieve_context(retriever, "da-desk", "port"))

    assert context.count("\n\n---\n\n") == 1


def test_build_product_retrievers_skips_missing_documents(tmp_path):
    (tmp_path / "da-desk.md").write_text("# DA-Desk\n\nPort dues are audited.", encoding="utf-8")
    (tmp_path / "shipserv.md").write_text("# ShipServ\n\nSend an RFQ to a supplier.", encoding="utf-8")

    retrievers = asyncio.run(build_product_retrievers(
        data_dir=str(tmp_path),
        topics=[TOPICS_BY_ID[t] for t in ("da-desk", "martrust", "shipserv")],
        encoder=keyword_encoder,
    ))

    assert sorted(retrievers) == ["da-desk", "shipserv"]
    passages = asyncio.run(retrievers["shipserv"].retrieve("shipserv", "rfq supplier"))
    assert passages == ["# ShipServ\n\nSend an RFQ to a supplier."]
