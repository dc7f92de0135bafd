"""Main FastAPI application.

Run with ``uvicorn codesearch.web.app:create_app --factory``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import load_config
from ..core.embeddings import EmbeddingProvider, make_embedder
from ..core.rate_limit import Governors, build_governors
from ..indexing import build_indexer
from ..search import build_router
from ..storage import EmbeddingStore, create_embedding_store
from .errors import register_error_handlers
from .routes import indexing, search

logger = logging.getLogger(__name__)


def create_app(
    cfg: Optional[Dict] = None,
    embedder: Optional[EmbeddingProvider] = None,
    store: Optional[EmbeddingStore] = None,
    governors: Optional[Governors] = None,
) -> FastAPI:
    """Build the app; collaborators not passed in are created from config."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = cfg or load_config()
    embedder = embedder or make_embedder(cfg)
    store = store or create_embedding_store(cfg)
    governors = governors or build_governors(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down, closing embedding store")
        store.close()

    app = FastAPI(title="CodeSearch Backend", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = cfg
    app.state.store = store
    app.state.governors = governors
    app.state.indexer = build_indexer(cfg, embedder, store, governors.embedding)
    app.state.search_router = build_router(cfg, embedder, store)
    app.state.jobs = indexing.JobRegistry()

    register_error_handlers(app)

    api_router = APIRouter(prefix="/api")
    api_router.include_router(indexing.router)
    api_router.include_router(search.router)
    app.include_router(api_router)

    logger.info(f"CodeSearch backend ready ({type(store).__name__}, dimension {store.dimension})")
    return app
