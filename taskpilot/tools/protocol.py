"""
Tool RPC Protocol

JSON-RPC 2.0 style messages exchanged between ToolClient and ToolServer.

Design decisions:
- Pydantic models validate inbound requests; the wire version field is
  called "jsonrpc" but exposed in Python as ``version``
- A response carries exactly one of ``result`` and ``error``
"""

from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

PROTOCOL_VERSION = "2024-11-05"


class ErrorCode(IntEnum):
    """Numeric error codes carried in error responses."""

    # Standard JSON-RPC
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Tool server
    TOOL_NOT_FOUND = -32000
    TOOL_EXECUTION_ERROR = -32001
    RESOURCE_NOT_FOUND = -32002
    RESOURCE_ACCESS_DENIED = -32003
    PROMPT_NOT_FOUND = -32004
    INITIALIZATION_ERROR = -32005
    CONNECTION_ERROR = -32006
    TIMEOUT_ERROR = -32007


class Method:
    INITIALIZE = "initialize"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"


class RpcRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: Literal["2.0"] = Field(default="2.0", alias="jsonrpc")
    id: str | int
    method: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class RpcError(BaseModel):
    code: int
    message: str
    data: Any = None


class RpcResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: Literal["2.0"] = Field(default="2.0", alias="jsonrpc")
    id: str | int | None = None
    result: Any = None
    error: RpcError | None = None

    @model_validator(mode="after")
    def _result_xor_error(self) -> "RpcResponse":
        if self.error is not None and self.result is not None:
            raise ValueError("a response carries either a result or an error")
        return self

    @classmethod
    def success(cls, request_id: str | int | None, result: Any) -> "RpcResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: str | int | None,
        code: int,
        message: str,
        data: Any = None,
    ) -> "RpcResponse":
        return cls(id=request_id, error=RpcError(code=int(code), message=message, data=data))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        """Serialize, omitting whichever of result/error is unused."""
        wire = self.model_dump(by_alias=True)
        if self.error is None:
            wire.pop("error")
        else:
            wire.pop("result")
        return wire


class Resource(BaseModel):
    """A readable resource advertised by the server."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    uri: str = Field(min_length=1)
    name: str
    description: str = ""
    mime_type: str = Field(default="text/plain", alias="mimeType")
