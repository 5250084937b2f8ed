from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict

from school_rentals.models.rental_models import TimeSlotId


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    userID: str
    equipmentID: str
    date: date
    timeSlot: TimeSlotId


class BulkReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalIDs: List[str] = []


class RentalFailure(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalID: str
    kind: str
    message: str


class BulkReturnResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    returned: List[str] = []
    failed: List[RentalFailure] = []


class RentalFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Literal["all", "active", "returned", "overdue"] = "all"
    search: Optional[str] = None
    day: Optional[date] = None


class ReminderOutcome(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalID: str
    recipient: Optional[str] = None
    status: Literal["sent", "failed", "duplicate", "skipped"]
    attempts: int = 0
    error: Optional[str] = None


class ReminderBatchResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    outcomes: List[ReminderOutcome] = []

    def with_status(self, status: str) -> List[ReminderOutcome]:
        return [item for item in self.outcomes if item.status == status]
