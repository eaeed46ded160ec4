"""Shared Pydantic schemas."""
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    detail: str


class DeleteResponse(BaseModel):
    deleted: bool = True
    id: str = ""
