from typing import Dict

from pydantic import BaseModel

class StatsResponse(BaseModel):
    patients: int
    doctors: int
    appointments: int
    health_records: int
    appointments_by_status: Dict[str, int]
    accounts_by_role: Dict[str, int]
