"""Arguments of the licensed search tool, shared by the MCP and HTTP surfaces"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

SearchType = Literal["neural", "deep", "fast", "auto"]


class SearchToolArgs(BaseModel):
    query: str = Field(..., description="Search query")
    num_results: int = Field(10, ge=1, le=100, description="Number of results (max 100)")
    type: SearchType = Field("neural", description="Exa search type")
    include_domains: Optional[List[str]] = Field(None, description="Only return results from these domains")
    exclude_domains: Optional[List[str]] = Field(None, description="Never return results from these domains")
    fetch: bool = Field(
        False,
        description=(
            "If true, fetch each result URL directly. When a publisher answers 402 with x402 "
            "headers, acquire a license from the ledger and retry with the licensed URL."
        ),
    )
    stage: Literal["infer", "embed", "tune", "train"] = Field("infer", description="Intended use of the content")
    distribution: Literal["private", "public"] = Field("private", description="Audience of the output")
    estimated_tokens: int = Field(
        1500, gt=0, description="Token estimate declared when acquiring a license for a 402 paywall"
    )
    max_chars: Optional[int] = Field(
        None, gt=0, description="Max chars to return per fetched document (defaults to FETCH_MAX_CHARS)"
    )

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query is required")
        return value


def tool_input_schema() -> Dict[str, Any]:
    """JSON schema advertised to MCP clients"""
    return SearchToolArgs.model_json_schema()
