"""Schemas package for API request bodies."""

from app.schemas.payments import InitializeRequest, VerifyRequest

__all__ = ["InitializeRequest", "VerifyRequest"]
