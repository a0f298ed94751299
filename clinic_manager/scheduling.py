"""Scheduling rules shared by the appointment and appointment-type routes."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from . import database
from .money import ZERO

logger = logging.getLogger(__name__)

TYPE_IN_USE_TITLE = "Não é possível excluir o tipo de consulta"
TYPE_IN_USE_DESCRIPTION = (
    "Existem consultas agendadas com este tipo. Remova ou altere essas consultas primeiro."
)


class AppointmentTypeInUse(Exception):
    """Deletion refused because appointments still reference the type."""

    def __init__(self, type_id: str) -> None:
        super().__init__(TYPE_IN_USE_DESCRIPTION)
        self.type_id = type_id


class AppointmentTypeNotFound(LookupError):
    pass


class InvalidAppointmentReference(ValueError):
    """The appointment points at a patient or type the user does not own."""


def resolve_appointment_payload(owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Check the referenced patient/type belong to ``owner_id`` and fill the value.

    An omitted value falls back to the appointment type's price, or zero when
    no type is selected.
    """
    if not database.fetch_patient(owner_id, data["patient_id"]):
        raise InvalidAppointmentReference("Paciente inválido")
    appointment_type = None
    type_id = data.get("appointment_type_id")
    if type_id:
        appointment_type = database.fetch_appointment_type(owner_id, type_id)
        if not appointment_type:
            raise InvalidAppointmentReference("Tipo de consulta inválido")
    if data.get("value") is None:
        data = {**data, "value": appointment_type["value"] if appointment_type else ZERO}
    return data


def delete_appointment_type(owner_id: str, type_id: str) -> Tuple[List[dict], List[dict]]:
    """Delete an appointment type unless an appointment still references it.

    Check-then-act without a transaction: an appointment created between the
    check and the delete is caught by the foreign key and surfaces as a store
    error. Returns the refreshed appointment-type and appointment lists.
    """
    if not database.fetch_appointment_type(owner_id, type_id):
        raise AppointmentTypeNotFound(type_id)
    if database.appointment_type_in_use(type_id):
        logger.info("Refusing to delete appointment type %s: still referenced", type_id)
        raise AppointmentTypeInUse(type_id)
    if not database.delete_appointment_type(owner_id, type_id):
        raise AppointmentTypeNotFound(type_id)
    return database.list_appointment_types(owner_id), database.list_appointments(owner_id)
