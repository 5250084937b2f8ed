from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from school_rentals.models.rental_models import Sport


class EquipmentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    equipmentID: Optional[str] = None
    name: str
    sport: Sport
    totalQuantity: int = Field(ge=1)
    availableQuantity: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name is required")
        return value

    @model_validator(mode="after")
    def _available_within_total(self):
        if self.availableQuantity is not None and self.availableQuantity > self.totalQuantity:
            raise ValueError("availableQuantity cannot exceed totalQuantity")
        return self


class EquipmentUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    sport: Optional[Sport] = None
    totalQuantity: Optional[int] = Field(default=None, ge=1)
    availableQuantity: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("name cannot be blank")
        return value
