"""
Request contracts for the worker API.
"""

from .pydantic_models import BaseParamsModel, LeaseRequest, ReportRequest

__all__ = ['BaseParamsModel', 'LeaseRequest', 'ReportRequest']
