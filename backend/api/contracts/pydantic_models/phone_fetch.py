"""
Request bodies of the phone fetch worker API.

Endpoints:
- POST /api/phone-fetch/lease   { workerId? }
- POST /api/phone-fetch/report  { leaseId, status, phoneNumber?, businessTitle?, error? }
"""

from typing import Literal, Optional

from pydantic import Field

from .base import BaseParamsModel


class LeaseRequest(BaseParamsModel):
    worker_id: Optional[str] = Field(default=None, alias='workerId', max_length=128)


class ReportRequest(BaseParamsModel):
    lease_id: str = Field(alias='leaseId', min_length=1, max_length=64)
    status: Literal['ok', 'error']
    phone_number: Optional[str] = Field(default=None, alias='phoneNumber', max_length=64)
    business_title: Optional[str] = Field(default=None, alias='businessTitle', max_length=512)
    error: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.status == 'ok' and bool(self.phone_number)
