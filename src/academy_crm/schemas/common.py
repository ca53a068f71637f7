"""Shared Pydantic v2 schemas: pagination and error bodies."""

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Query parameters for paginated listings."""

    page: int = Field(default=1, ge=1, description="Page number (1-based)")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per page")


class PaginationMeta(BaseModel):
    """Pagination metadata included in paginated responses."""

    total: int = Field(description="Total number of items")
    page: int = Field(description="Current page number")
    page_size: int = Field(description="Items per page after server-side caps")
    total_pages: int = Field(description="Total number of pages")


class ErrorResponse(BaseModel):
    """Error body returned for rejected import requests."""

    detail: str = Field(description="Human-readable error message")
