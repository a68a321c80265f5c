"""
Response envelope shared by every endpoint.
"""
from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel

DataT = TypeVar("DataT")


class Envelope(BaseModel, Generic[DataT]):
    success: bool = True
    message: str
    data: Optional[DataT] = None


class ListEnvelope(BaseModel, Generic[DataT]):
    success: bool = True
    message: str = "OK"
    count: int
    data: List[DataT]


class MessageOnly(BaseModel):
    success: bool = True
    message: str


class FieldError(BaseModel):
    field: str
    message: str
