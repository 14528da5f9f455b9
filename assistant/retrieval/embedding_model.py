"""Embedding model bootstrap for product retrieval.

Architectural role:
    Owns the single `SentenceTransformer` instance that embeds documentation
    chunks at startup and user questions at query time.

Device selection:
    `EMBED_DEVICE` pins the device explicitly. Otherwise CUDA is used only when
    enough VRAM is free (`EMBED_MIN_VRAM_MB`), and CPU in every other case.

Concurrency:
    Topic indexes are built in parallel worker threads; the loader is guarded by
    a lock so the model is read from disk once.
"""

import logging
import os
import threading

EMBED_MODEL = os.getenv("EMBED_MODEL", "intfloat/multilingual-e5-small")
EMBED_DEVICE = os.getenv("EMBED_DEVICE", "").strip().lower()
EMBED_MIN_VRAM_MB = int(os.getenv("EMBED_MIN_VRAM_MB", "800"))

logger = logging.getLogger(__name__)

_model = None
_model_lock = threading.Lock()


def has_enough_vram(min_required_mb: int = EMBED_MIN_VRAM_MB) -> bool:
    """True when CUDA is present with more than `min_required_mb` MB free."""
    import torch

    if not torch.cuda.is_available():
        return False

    free_bytes, _ = torch.cuda.mem_get_info()
    free_mb = free_bytes / (1024 * 1024)
    logger.info("Free VRAM for embeddings: %.0f MB", free_mb)

    return free_mb > min_required_mb


def select_device() -> str:
    if EMBED_DEVICE:
        return EMBED_DEVICE
    return "cuda" if has_enough_vram() else "cpu"


def get_model():
    """Return the shared embedding model, loading it on first use."""
    global _model

    if _model is not None:
        return _model

    with _model_lock:
        if _model is None:
            from sentence_transformers import SentenceTransformer

            device = select_device()
            logger.info("Loading embedding model %s on %s", EMBED_MODEL, device)
            _model = SentenceTransformer(EMBED_MODEL, device=device)

    return _model
