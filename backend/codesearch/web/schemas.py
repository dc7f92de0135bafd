from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional

from ..core.models import FileInput, SymbolInput


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SymbolSchema(CamelModel):
    name: str = Field(..., min_length=1)
    content: str
    start_line: int = Field(..., ge=1)
    end_line: int = Field(..., ge=1)
    complexity: Optional[int] = None

    def to_input(self) -> SymbolInput:
        return SymbolInput(
            name=self.name,
            content=self.content,
            start_line=self.start_line,
            end_line=self.end_line,
            complexity=self.complexity,
        )


class FileSchema(CamelModel):
    path: str = Field(..., min_length=1)
    content: str = ""
    language: str = ""
    complexity: Optional[int] = None
    functions: List[SymbolSchema] = []
    classes: List[SymbolSchema] = []

    def to_input(self) -> FileInput:
        return FileInput(
            path=self.path,
            content=self.content,
            language=self.language,
            complexity=self.complexity,
            functions=[f.to_input() for f in self.functions],
            classes=[c.to_input() for c in self.classes],
        )


class IndexRequest(CamelModel):
    repository_id: str = Field(..., min_length=1)
    units: List[FileSchema]
    batch_size: Optional[int] = Field(None, ge=1, le=100)
    replace_existing: bool = False


class UnitFailureResponse(CamelModel):
    unit: Dict[str, Any]
    kind: str
    message: str


class IndexReportResponse(CamelModel):
    repository_id: str
    attempted: int
    succeeded: int
    failed: int
    skipped: int
    batches: int
    cancelled: bool
    failures: List[UnitFailureResponse]


class IndexJobResponse(CamelModel):
    job_id: str
    repository_id: str
    status: str


class SearchFilters(CamelModel):
    language: Optional[str] = None
    file_type: Optional[Literal["file", "function", "class"]] = None
    complexity: Optional[Literal["low", "medium", "high"]] = None
    repository: Optional[str] = None


class SearchRequest(CamelModel):
    query: str = Field("", max_length=500)
    # Checked by the router (INVALID_SEARCH_TYPE)
    type: str = "semantic"
    filters: Optional[SearchFilters] = None
    limit: int = Field(10, ge=1, le=50)
    threshold: float = Field(0.7, ge=0, le=1)
    repository_id: Optional[str] = None
    file_path: Optional[str] = None
    function_name: Optional[str] = None
    class_name: Optional[str] = None


class SimilarRequest(CamelModel):
    repository_id: str = Field(..., min_length=1)
    file_path: Optional[str] = None
    function_name: Optional[str] = None
    class_name: Optional[str] = None
    threshold: float = Field(0.7, ge=0, le=1)
    limit: int = Field(10, ge=1, le=50)


class VectorSearchRequest(CamelModel):
    # Checked by the router (INVALID_EMBEDDING)
    embedding: Any = None
    limit: int = Field(10, ge=1, le=100)
    threshold: float = Field(0.7, ge=0, le=1)
    filter: Optional[Dict[str, Any]] = None


class UnitMetadata(CamelModel):
    language: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    complexity: Optional[int] = None


class SearchResult(CamelModel):
    id: Optional[str]
    repository_id: str
    file_path: str
    function_name: Optional[str] = None
    class_name: Optional[str] = None
    unit_type: str
    content: str
    metadata: UnitMetadata
    score: float


class SearchResponse(CamelModel):
    results: List[SearchResult]
    total_results: int
    search_type: Optional[str] = None
    query: Optional[str] = None


class VectorSearchResponse(CamelModel):
    results: List[SearchResult]
    total_results: int
    embedding_dimensions: int


class StatsBreakdownResponse(CamelModel):
    unit_type: str
    count: int
    avg_complexity: Optional[float] = None
    languages: List[str]


class StatsResponse(CamelModel):
    repository_id: str
    total_embeddings: int
    breakdown: List[StatsBreakdownResponse]


class LanguagesResponse(CamelModel):
    languages: List[str]
    total: int
