from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from school_rentals.models.rental_models import Role


class CreateUserDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    email: str
    name: str
    role: Role = "student"
    studentId: Optional[str] = None
    year: Optional[int] = Field(default=None, ge=1, le=13)
    password: str = Field(min_length=8)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, value: str) -> str:
        value = value.strip()
        local, _, domain = value.partition("@")
        if not local or not domain:
            raise ValueError("email must look like name@domain")
        return value

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name is required")
        return value

    @model_validator(mode="after")
    def _student_only_fields(self):
        # studentId/year only describe students
        if self.role != "student":
            self.studentId = None
            self.year = None
        return self


class AuthLoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    password: str
