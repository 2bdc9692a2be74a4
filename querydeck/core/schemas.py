from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


# URL path segment of the public endpoint
SLUG_PATTERN = r"^[a-z0-9_-]+$"
# Bind parameter names, as referenced by ":name" in the SQL text
IDENTIFIER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"

Scalar = Union[bool, int, float, str]


# =========================
# Enums
# =========================
class ParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"


# =========================
# PARAMETERS
# =========================
class QueryParameter(BaseModel):
    """
    One named input of a custom query.

    The name is unconstrained here so that form state can hold
    half-typed names; `DeclaredParameter` is the strict variant.
    """

    name: str
    type: ParameterType = ParameterType.STRING
    required: bool = False
    description: Optional[str] = None
    default: Optional[Scalar] = None


class DeclaredParameter(QueryParameter):
    name: str = Field(pattern=IDENTIFIER_PATTERN)


def _unique_parameter_names(parameters):
    seen = set()
    for parameter in parameters:
        if parameter.name in seen:
            raise ValueError(f"Duplicate parameter name: {parameter.name}")
        seen.add(parameter.name)
    return parameters


ParameterList = Annotated[List[DeclaredParameter], AfterValidator(_unique_parameter_names)]


# =========================
# CUSTOM QUERY (store)
# =========================
class CustomQueryBase(BaseModel):
    slug: str = Field(pattern=SLUG_PATTERN, max_length=120)
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    sql_query: str = Field(min_length=1)
    parameters: ParameterList = Field(default_factory=list)
    cache_ttl: int = Field(default=0, ge=0)
    is_enabled: bool = True


class CustomQueryCreate(CustomQueryBase):
    pass


class CustomQueryUpdate(BaseModel):
    slug: Optional[str] = Field(default=None, pattern=SLUG_PATTERN, max_length=120)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    sql_query: Optional[str] = Field(default=None, min_length=1)
    parameters: Optional[ParameterList] = None
    cache_ttl: Optional[int] = Field(default=None, ge=0)
    is_enabled: Optional[bool] = None


class CustomQueryPatch(BaseModel):
    """Single-field partial updates that skip full definition validation."""

    is_enabled: Optional[bool] = None
    cache_ttl: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class CustomQueryResponse(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str] = None
    sql_query: str
    parameters: List[QueryParameter]
    method: HttpMethod
    is_readonly: bool
    cache_ttl: int
    is_enabled: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CustomQueryList(BaseModel):
    queries: List[CustomQueryResponse]


class CustomQueryEnvelope(BaseModel):
    query: CustomQueryResponse


# =========================
# EXECUTION
# =========================
class TestQueryRequest(BaseModel):
    parameters: Dict[str, Any] = Field(default_factory=dict)


class TestExecutionResult(BaseModel):
    success: bool = True
    data: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    # Milliseconds
    execution_time: float = 0.0


class ExecutionMeta(BaseModel):
    row_count: int
    execution_time: float


class ExecutionResponse(BaseModel):
    success: bool = True
    data: List[Dict[str, Any]] = Field(default_factory=list)
    meta: ExecutionMeta


class QueryLogResponse(BaseModel):
    id: str
    query_id: str
    execution_time: int
    row_count: int
    parameters: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    executed_at: Optional[datetime] = None


class QueryLogList(BaseModel):
    logs: List[QueryLogResponse]


# =========================
# ADMIN FORM (client)
# =========================
class QueryForm(BaseModel):
    """Editable state behind the create/edit screen."""

    slug: str = ""
    name: str = ""
    description: str = ""
    sql_query: str = ""
    parameters: List[QueryParameter] = Field(default_factory=list)
    cache_ttl: int = 0
    is_enabled: bool = False

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(mode="json")
        payload["description"] = self.description or None
        return payload
