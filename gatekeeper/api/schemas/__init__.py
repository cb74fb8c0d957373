"""Pydantic schemas for the Gatekeeper API."""

from .common import PaginationParams, PaginatedResponse, ErrorResponse

__all__ = ["PaginationParams", "PaginatedResponse", "ErrorResponse"]
