"""Search routes."""

from fastapi import APIRouter, Depends, Request

from ...core.models import SearchQuery
from ...search import SearchRouter
from ..schemas import (
    LanguagesResponse,
    SearchRequest,
    SearchResponse,
    SearchResult,
    SimilarRequest,
    StatsResponse,
    VectorSearchRequest,
    VectorSearchResponse,
)

router = APIRouter(prefix="/search")


def get_search_router(request: Request) -> SearchRouter:
    return request.app.state.search_router


def _results(hits):
    return [SearchResult.model_validate(h.to_dict()) for h in hits]


@router.post("/code", response_model=SearchResponse)
async def search_code(request: SearchRequest, searcher: SearchRouter = Depends(get_search_router)):
    """Semantic, exact or similarity search."""
    filters = request.filters.model_dump(by_alias=True, exclude_none=True) if request.filters else {}
    query = SearchQuery(
        text=request.query,
        type=request.type,
        filters=filters,
        limit=request.limit,
        threshold=request.threshold,
        repository_id=request.repository_id,
        file_path=request.file_path,
        function_name=request.function_name,
        class_name=request.class_name,
    )
    hits = await searcher.search(query)
    results = _results(hits)
    return SearchResponse(
        results=results,
        total_results=len(results),
        search_type=request.type,
        query=request.query,
    )


@router.post("/similar", response_model=SearchResponse)
async def search_similar(request: SimilarRequest, searcher: SearchRouter = Depends(get_search_router)):
    """Find code similar to an already indexed unit."""
    hits = await searcher.find_similar(
        repository_id=request.repository_id,
        file_path=request.file_path,
        function_name=request.function_name,
        class_name=request.class_name,
        threshold=request.threshold,
        limit=request.limit,
    )
    results = _results(hits)
    return SearchResponse(results=results, total_results=len(results), search_type="similarity")


@router.post("/vector", response_model=VectorSearchResponse)
async def search_vector(request: VectorSearchRequest, searcher: SearchRouter = Depends(get_search_router)):
    """Direct vector search."""
    hits = await searcher.vector_search(
        request.embedding,
        limit=request.limit,
        threshold=request.threshold,
        filter=request.filter,
    )
    results = _results(hits)
    return VectorSearchResponse(
        results=results,
        total_results=len(results),
        embedding_dimensions=len(request.embedding),
    )


@router.get("/stats/{repository_id}", response_model=StatsResponse)
async def embedding_stats(repository_id: str, searcher: SearchRouter = Depends(get_search_router)):
    stats = await searcher.stats(repository_id)
    return StatsResponse.model_validate(stats.to_dict())


@router.get("/languages", response_model=LanguagesResponse)
async def available_languages(searcher: SearchRouter = Depends(get_search_router)):
    languages = await searcher.languages()
    return LanguagesResponse(languages=languages, total=len(languages))
