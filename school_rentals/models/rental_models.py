from datetime import date, datetime, time
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


Role = Literal["student", "teacher", "admin"]
Sport = Literal["soccer", "basketball", "handball", "rugby"]
TimeSlotId = Literal["recess", "lunch"]
RentalStatus = Literal["active", "returned"]

ROLES = ("student", "teacher", "admin")
SPORTS = ("soccer", "basketball", "handball", "rugby")
RENTAL_STATUSES = ("active", "returned")
# "overdue" is a display label only; it is never stored on a Rental.
DISPLAY_STATUSES = ("active", "returned", "overdue")


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TimeSlot(_Record):
    id: TimeSlotId
    name: str
    start_time: time
    end_time: time


TIME_SLOTS = {
    "recess": TimeSlot(id="recess", name="Recess", start_time=time(11, 0), end_time=time(11, 30)),
    "lunch": TimeSlot(id="lunch", name="Lunch", start_time=time(12, 30), end_time=time(13, 0)),
}
SLOT_ORDER = {"recess": 0, "lunch": 1}


class User(_Record):
    id: str
    email: str
    name: str
    role: Role = "student"
    student_id: Optional[str] = None
    year: Optional[int] = None
    created_at: datetime
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None


class Equipment(_Record):
    id: str
    name: str
    sport: Sport
    total_quantity: int = Field(ge=1)
    available_quantity: int = Field(ge=0)
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_quantities(self):
        if self.available_quantity > self.total_quantity:
            raise ValueError("availableQuantity cannot exceed totalQuantity")
        return self


class Rental(_Record):
    id: str
    user_id: str
    equipment_id: str
    equipment_name: str
    sport: str
    time_slot: TimeSlotId
    date: date
    status: RentalStatus = "active"
    rented_at: datetime
    due_date: datetime
    returned_at: Optional[datetime] = None


class NotificationRecord(_Record):
    rental_id: str
    recipient: str
    recipient_name: str
    equipment_name: str
    subject: str
    body: str
    due_date: datetime
    logged_on: date
    created_at: datetime


def default_equipment() -> List[Equipment]:
    return [
        Equipment(
            id="1",
            name="Soccer Ball",
            sport="soccer",
            total_quantity=10,
            available_quantity=10,
            description="Standard size 5 soccer ball",
        ),
        Equipment(
            id="2",
            name="Basketball",
            sport="basketball",
            total_quantity=8,
            available_quantity=8,
            description="Official size basketball",
        ),
        Equipment(
            id="3",
            name="Handball",
            sport="handball",
            total_quantity=6,
            available_quantity=6,
            description="Official handball",
        ),
        Equipment(
            id="4",
            name="Rugby Ball",
            sport="rugby",
            total_quantity=5,
            available_quantity=5,
            description="Official rugby ball",
        ),
    ]


class RentalState(_Record):
    """Whole persisted snapshot: ``{users, equipment, rentals, currentUser}``."""

    users: List[User] = Field(default_factory=list)
    equipment: List[Equipment] = Field(default_factory=default_equipment)
    rentals: List[Rental] = Field(default_factory=list)
    current_user: Optional[User] = None
