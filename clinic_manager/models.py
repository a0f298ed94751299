"""Pydantic models for the clinic manager API."""
from __future__ import annotations

import re
import datetime as dt
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .settings import get_settings
from .timezone import clinic_today

PASSWORD_MIN_LENGTH = get_settings().password_min_length
_TIME_PATTERN = re.compile(r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::\d{2}(?:\.\d+)?)?$")


def _require_password_length(value: str, label: str) -> str:
    if len(value or "") < PASSWORD_MIN_LENGTH:
        raise ValueError(f"{label} deve ter pelo menos {PASSWORD_MIN_LENGTH} caracteres")
    return value


class PatientBase(BaseModel):
    """Patient contact record."""
    name: str = Field(..., description="Patient display name")
    phone: str = Field(..., description="Contact phone number")
    email: EmailStr = Field(..., description="Contact email")

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("O nome deve ter pelo menos 2 caracteres")
        return value

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 10:
            raise ValueError("O telefone deve ter pelo menos 10 dígitos")
        return value


class PatientCreate(PatientBase):
    pass


class Patient(PatientBase):
    id: str = Field(..., description="Opaque identifier for the patient")
    created_at: str = Field(..., description="Timestamp when the patient was created")
    created_by: str = Field(..., description="Identifier of the owning user")

    model_config = ConfigDict(from_attributes=True)


class AppointmentTypeBase(BaseModel):
    """Priced appointment category (e.g. standard consultation)."""
    name: str = Field(..., description="Appointment type name")
    value: Decimal = Field(
        ..., ge=0, max_digits=12, decimal_places=2, description="Default price for the type"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Nome é obrigatório")
        return value


class AppointmentTypeCreate(AppointmentTypeBase):
    pass


class AppointmentType(AppointmentTypeBase):
    id: str = Field(..., description="Opaque identifier for the appointment type")
    user_id: str = Field(..., description="Identifier of the owning user")

    model_config = ConfigDict(from_attributes=True)


class AppointmentPatient(BaseModel):
    id: str
    name: str


class AppointmentTypeSummary(BaseModel):
    id: str
    name: str
    value: Decimal


class AppointmentCreate(BaseModel):
    """Scheduling form payload."""
    patient_id: str = Field(..., description="Patient being scheduled")
    date: dt.date = Field(default_factory=clinic_today, description="Appointment date (defaults to today)")
    time: str = Field(..., description="Wall-clock time, HH:MM")
    value: Optional[Decimal] = Field(
        None,
        ge=0,
        max_digits=12,
        decimal_places=2,
        description="Charged value; defaults to the appointment type's value",
    )
    appointment_type_id: Optional[str] = Field(None, description="Appointment type, if any")

    @field_validator("patient_id")
    @classmethod
    def validate_patient(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Paciente é obrigatório")
        return value

    @field_validator("time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        match = _TIME_PATTERN.match((value or "").strip())
        if not match:
            raise ValueError("Horário é obrigatório")
        hour, minute = int(match.group("hour")), int(match.group("minute"))
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError("Horário inválido")
        return f"{hour:02d}:{minute:02d}"

    @field_validator("appointment_type_id")
    @classmethod
    def blank_type_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class Appointment(BaseModel):
    id: str
    patient_id: str
    date: dt.date
    time: str
    value: Decimal
    appointment_type_id: Optional[str] = None
    user_id: str
    patient: Optional[AppointmentPatient] = Field(None, description="Embedded patient, null for orphans")
    appointment_type: Optional[AppointmentTypeSummary] = Field(None, description="Embedded appointment type")

    model_config = ConfigDict(from_attributes=True)


class OperationResult(BaseModel):
    success: bool = Field(..., description="Whether the operation succeeded")
    id: str = Field(..., description="Identifier of the affected record")
    message: Optional[str] = Field(None, description="User-facing notification text")


class AppointmentTypeDeleteResult(OperationResult):
    appointment_types: List[AppointmentType] = Field(
        default_factory=list, description="Appointment types after the deletion"
    )
    appointments: List[Appointment] = Field(default_factory=list, description="Appointments after the deletion")


class ReportLine(BaseModel):
    id: str
    date: dt.date
    patient_name: str
    value: Decimal
    formatted_value: str

    model_config = ConfigDict(from_attributes=True)


class PatientTotal(BaseModel):
    patient_name: str
    total_value: Decimal
    formatted_total: str
    appointments: List[ReportLine] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class FinancialReport(BaseModel):
    start_date: dt.date = Field(..., description="First day of the reporting window")
    end_date: dt.date = Field(..., description="Last day of the reporting window (inclusive)")
    patient_totals: List[PatientTotal] = Field(default_factory=list)
    total_value: Decimal = Field(..., description="Grand total across every patient")
    formatted_total: str

    model_config = ConfigDict(from_attributes=True)


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _require_password_length(value, "A senha")


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _require_password_length(value, "A nova senha")


class PasswordChange(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str

    @field_validator("current_password")
    @classmethod
    def validate_current(cls, value: str) -> str:
        return _require_password_length(value, "A senha atual")

    @field_validator("new_password")
    @classmethod
    def validate_new(cls, value: str) -> str:
        return _require_password_length(value, "A nova senha")

    @field_validator("confirm_password")
    @classmethod
    def validate_confirm(cls, value: str) -> str:
        return _require_password_length(value, "A confirmação da senha")

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordChange":
        if self.new_password != self.confirm_password:
            raise ValueError("As senhas não coincidem")
        return self


class User(BaseModel):
    id: str
    email: str


class AuthResult(BaseModel):
    user: Optional[User] = None
    message: str
    description: Optional[str] = None


class SessionStatus(BaseModel):
    authenticated: bool
    user: Optional[User] = None


class AuthEvent(BaseModel):
    type: str = Field(..., description="SIGNED_IN, SIGNED_OUT or USER_UPDATED")
    user_id: str
    timestamp: str


class DashboardSummary(BaseModel):
    email: str
    greeting: str
    sections: List[str]
