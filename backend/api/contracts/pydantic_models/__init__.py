"""
Pydantic models for worker API request validation.

Usage:
    from api.contracts.pydantic_models import ReportRequest

    body = ReportRequest.model_validate(request.get_json(silent=True) or {})
"""

from .base import BaseParamsModel
from .phone_fetch import LeaseRequest, ReportRequest

__all__ = [
    'BaseParamsModel',
    'LeaseRequest',
    'ReportRequest',
]
