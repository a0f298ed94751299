"""API routes that power the clinic manager backend."""
from __future__ import annotations

import logging
import unicodedata
from contextlib import contextmanager
from typing import Iterator, List, Literal, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from . import database
from .auth import (
    SessionContext,
    clear_login_cookie,
    create_reset_token,
    deliver_password_reset,
    get_current_session,
    hash_password,
    read_reset_token,
    require_session,
    sanitize_user,
    set_login_cookie,
    translate_auth_error,
    verify_password,
)
from .auth_events import SIGNED_IN, SIGNED_OUT, USER_UPDATED, stream
from .export import XLSX_MEDIA_TYPE, export_filename, export_report
from .models import (
    Appointment,
    AppointmentCreate,
    AppointmentType,
    AppointmentTypeCreate,
    AppointmentTypeDeleteResult,
    AuthResult,
    FinancialReport,
    OperationResult,
    PasswordChange,
    PasswordResetConfirm,
    PasswordResetRequest,
    Patient,
    PatientCreate,
    SessionStatus,
    SignInRequest,
    SignUpRequest,
    User,
)
from .reports import build_financial_report, month_window, parse_month
from .scheduling import (
    TYPE_IN_USE_TITLE,
    AppointmentTypeInUse,
    AppointmentTypeNotFound,
    InvalidAppointmentReference,
    delete_appointment_type,
    resolve_appointment_payload,
)
from .timezone import clinic_today

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])
patients_router = APIRouter(prefix="/patients", tags=["patients"])
appointment_types_router = APIRouter(prefix="/appointment-types", tags=["appointment types"])
appointments_router = APIRouter(prefix="/appointments", tags=["appointments"])
reports_router = APIRouter(prefix="/reports", tags=["reports"])

DUPLICATE_EMAIL_MESSAGE = "E-mail já cadastrado. Por favor, faça login ou use a opção de recuperar senha."


def _notice(title: str, description: Optional[str] = None) -> dict:
    """Shape of every user-facing failure: a title plus the raw description."""
    return {"title": title, "description": description}


@contextmanager
def _store_call(title: str) -> Iterator[None]:
    """Surface store failures verbatim under ``title``; nothing is retried."""
    try:
        yield
    except database.RecordStoreError as exc:
        logger.error("%s: %s", title, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_notice(title, str(exc))) from exc


def _not_found(title: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_notice(title))


# --- auth ------------------------------------------------------------------


@auth_router.post("/sign-up", response_model=AuthResult, status_code=status.HTTP_201_CREATED)
def sign_up(payload: SignUpRequest) -> AuthResult:
    """Create an account; the user signs in separately afterwards."""
    with _store_call("Erro no cadastro"):
        if database.get_user_by_email(payload.email):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=_notice("Erro no cadastro", DUPLICATE_EMAIL_MESSAGE),
            )
        record = database.create_user(payload.email, hash_password(payload.password))
    logger.info("Registered user %s", record["id"])
    return AuthResult(
        user=User(**sanitize_user(record)),
        message="Cadastro realizado com sucesso",
        description="Faça login para acessar o Clinic Manager.",
    )


@auth_router.post("/sign-in", response_model=AuthResult)
def sign_in(payload: SignInRequest, response: Response) -> AuthResult:
    with _store_call("Erro ao entrar"):
        record = database.get_user_by_email(payload.email)
    if not record or not verify_password(payload.password, record["password_hash"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=_notice("Erro ao entrar", translate_auth_error("Invalid login credentials")),
        )
    set_login_cookie(response, record["id"])
    stream.publish(record["id"], SIGNED_IN)
    logger.info("User %s signed in", record["id"])
    return AuthResult(
        user=User(**sanitize_user(record)),
        message="Login realizado com sucesso",
        description="Bem-vindo ao Clinic Manager!",
    )


@auth_router.post("/sign-out", response_model=AuthResult)
def sign_out(request: Request, response: Response) -> AuthResult:
    session = get_current_session(request)
    clear_login_cookie(response)
    if session:
        stream.publish(session.user_id, SIGNED_OUT)
        logger.info("User %s signed out", session.user_id)
    return AuthResult(message="Sessão encerrada")


@auth_router.post("/reset-password", response_model=AuthResult, status_code=status.HTTP_202_ACCEPTED)
def request_password_reset(payload: PasswordResetRequest) -> AuthResult:
    """Issue a reset token when the account exists; the reply never reveals which."""
    with _store_call("Erro ao recuperar senha"):
        record = database.get_user_by_email(payload.email)
    if record:
        deliver_password_reset(record, create_reset_token(record))
    return AuthResult(
        message="E-mail de recuperação enviado",
        description="Verifique sua caixa de entrada para redefinir sua senha.",
    )


@auth_router.post("/reset-password/confirm", response_model=AuthResult)
def confirm_password_reset(payload: PasswordResetConfirm) -> AuthResult:
    with _store_call("Erro ao redefinir senha"):
        record = read_reset_token(payload.token)
        if not record:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=_notice("Erro ao redefinir senha", translate_auth_error("Invalid or expired reset token")),
            )
        database.update_user_password(record["id"], hash_password(payload.new_password))
    stream.publish(record["id"], USER_UPDATED)
    logger.info("User %s reset their password", record["id"])
    return AuthResult(user=User(**sanitize_user(record)), message="Senha redefinida com sucesso")


@auth_router.post("/change-password", response_model=AuthResult)
def change_password(
    payload: PasswordChange,
    session: SessionContext = Depends(require_session),
) -> AuthResult:
    """Set a new password for the signed-in user.

    The session is the proof of identity; ``current_password`` is only checked
    for length, not compared against the stored hash.
    """
    with _store_call("Erro ao alterar senha"):
        updated = database.update_user_password(session.user_id, hash_password(payload.new_password))
    if not updated:
        raise _not_found("Usuário não encontrado")
    stream.publish(session.user_id, USER_UPDATED)
    logger.info("User %s changed their password", session.user_id)
    return AuthResult(
        user=User(id=session.user_id, email=session.email),
        message="Senha alterada com sucesso",
        description="Sua senha foi atualizada.",
    )


@auth_router.get("/session", response_model=SessionStatus)
def current_session(request: Request) -> SessionStatus:
    session = get_current_session(request)
    if not session:
        return SessionStatus(authenticated=False)
    return SessionStatus(authenticated=True, user=User(id=session.user_id, email=session.email))


@auth_router.get("/me", response_model=User)
def current_user_route(session: SessionContext = Depends(require_session)) -> User:
    return User(id=session.user_id, email=session.email)


# --- patients --------------------------------------------------------------


@patients_router.get("", response_model=List[Patient])
def list_patients(
    order: Literal["created_at", "name"] = Query("created_at"),
    session: SessionContext = Depends(require_session),
) -> List[Patient]:
    """Return the user's patients, newest first (or by name for pickers)."""
    with _store_call("Erro ao carregar pacientes"):
        records = database.list_patients(session.user_id, order=order)
    return [Patient(**record) for record in records]


@patients_router.get("/{patient_id}", response_model=Patient)
def get_patient(patient_id: str, session: SessionContext = Depends(require_session)) -> Patient:
    with _store_call("Erro ao carregar paciente"):
        record = database.fetch_patient(session.user_id, patient_id)
    if not record:
        raise _not_found("Paciente não encontrado")
    return Patient(**record)


@patients_router.post("", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
def create_patient(payload: PatientCreate, session: SessionContext = Depends(require_session)) -> OperationResult:
    with _store_call("Erro ao salvar paciente"):
        record = database.create_patient(session.user_id, payload.model_dump())
    return OperationResult(success=True, id=record["id"], message="Paciente cadastrado com sucesso")


@patients_router.put("/{patient_id}", response_model=OperationResult)
def update_patient(
    patient_id: str,
    payload: PatientCreate,
    session: SessionContext = Depends(require_session),
) -> OperationResult:
    with _store_call("Erro ao salvar paciente"):
        updated = database.update_patient(session.user_id, patient_id, payload.model_dump())
    if not updated:
        raise _not_found("Paciente não encontrado")
    return OperationResult(success=True, id=patient_id, message="Paciente atualizado com sucesso")


@patients_router.delete("/{patient_id}", response_model=OperationResult)
def delete_patient(patient_id: str, session: SessionContext = Depends(require_session)) -> OperationResult:
    """Delete the patient; their appointments disappear from every listing."""
    with _store_call("Erro ao excluir paciente"):
        deleted = database.delete_patient(session.user_id, patient_id)
    if not deleted:
        raise _not_found("Paciente não encontrado")
    return OperationResult(success=True, id=patient_id, message="Paciente excluído com sucesso")


# --- appointment types -----------------------------------------------------


@appointment_types_router.get("", response_model=List[AppointmentType])
def list_appointment_types(session: SessionContext = Depends(require_session)) -> List[AppointmentType]:
    with _store_call("Erro ao carregar tipos de consulta"):
        records = database.list_appointment_types(session.user_id)
    return [AppointmentType(**record) for record in records]


@appointment_types_router.post("", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
def create_appointment_type(
    payload: AppointmentTypeCreate,
    session: SessionContext = Depends(require_session),
) -> OperationResult:
    with _store_call("Erro ao adicionar tipo de consulta"):
        record = database.create_appointment_type(session.user_id, payload.model_dump())
    return OperationResult(success=True, id=record["id"], message="Tipo de consulta adicionado com sucesso")


@appointment_types_router.put("/{type_id}", response_model=OperationResult)
def update_appointment_type(
    type_id: str,
    payload: AppointmentTypeCreate,
    session: SessionContext = Depends(require_session),
) -> OperationResult:
    with _store_call("Erro ao atualizar tipo de consulta"):
        updated = database.update_appointment_type(session.user_id, type_id, payload.model_dump())
    if not updated:
        raise _not_found("Tipo de consulta não encontrado")
    return OperationResult(success=True, id=type_id, message="Tipo de consulta atualizado com sucesso")


@appointment_types_router.delete("/{type_id}", response_model=AppointmentTypeDeleteResult)
def delete_appointment_type_route(
    type_id: str,
    session: SessionContext = Depends(require_session),
) -> AppointmentTypeDeleteResult:
    """Delete a type nobody uses and return both refreshed lists."""
    try:
        with _store_call("Erro ao excluir tipo de consulta"):
            types, appointments = delete_appointment_type(session.user_id, type_id)
    except AppointmentTypeInUse as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=_notice(TYPE_IN_USE_TITLE, str(exc)),
        ) from exc
    except AppointmentTypeNotFound as exc:
        raise _not_found("Tipo de consulta não encontrado") from exc
    return AppointmentTypeDeleteResult(
        success=True,
        id=type_id,
        message="Tipo de consulta excluído com sucesso",
        appointment_types=[AppointmentType(**record) for record in types],
        appointments=[Appointment(**record) for record in appointments],
    )


# --- appointments ----------------------------------------------------------


def _resolve_appointment(session: SessionContext, payload: AppointmentCreate) -> dict:
    try:
        with _store_call("Erro ao salvar consulta"):
            return resolve_appointment_payload(session.user_id, payload.model_dump())
    except InvalidAppointmentReference as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=_notice("Erro ao salvar consulta", str(exc)),
        ) from exc


@appointments_router.get("", response_model=List[Appointment])
def list_appointments(session: SessionContext = Depends(require_session)) -> List[Appointment]:
    """Return the user's appointments by date and time, hiding orphans."""
    with _store_call("Erro ao carregar consultas"):
        records = database.list_appointments(session.user_id)
    return [Appointment(**record) for record in records]


@appointments_router.get("/{appointment_id}", response_model=Appointment)
def get_appointment(appointment_id: str, session: SessionContext = Depends(require_session)) -> Appointment:
    with _store_call("Erro ao carregar consulta"):
        record = database.fetch_appointment(session.user_id, appointment_id)
    if not record or record["patient"] is None:
        raise _not_found("Consulta não encontrada")
    return Appointment(**record)


@appointments_router.post("", response_model=OperationResult, status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: AppointmentCreate,
    session: SessionContext = Depends(require_session),
) -> OperationResult:
    data = _resolve_appointment(session, payload)
    with _store_call("Erro ao salvar consulta"):
        record = database.create_appointment(session.user_id, data)
    return OperationResult(success=True, id=record["id"], message="Consulta agendada")


@appointments_router.put("/{appointment_id}", response_model=OperationResult)
def update_appointment(
    appointment_id: str,
    payload: AppointmentCreate,
    session: SessionContext = Depends(require_session),
) -> OperationResult:
    data = _resolve_appointment(session, payload)
    with _store_call("Erro ao salvar consulta"):
        updated = database.update_appointment(session.user_id, appointment_id, data)
    if not updated:
        raise _not_found("Consulta não encontrada")
    return OperationResult(success=True, id=appointment_id, message="Consulta atualizada")


@appointments_router.delete("/{appointment_id}", response_model=OperationResult)
def delete_appointment(appointment_id: str, session: SessionContext = Depends(require_session)) -> OperationResult:
    with _store_call("Erro ao excluir consulta"):
        deleted = database.delete_appointment(session.user_id, appointment_id)
    if not deleted:
        raise _not_found("Consulta não encontrada")
    return OperationResult(success=True, id=appointment_id, message="Consulta excluída com sucesso")


# --- reports ---------------------------------------------------------------


def _load_financial_report(session: SessionContext, month: Optional[str]):
    try:
        reference = parse_month(month, clinic_today())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    start_date, end_date = month_window(reference)
    with _store_call("Erro ao carregar consultas"):
        records = database.list_appointments(session.user_id, start_date=start_date, end_date=end_date)
    return build_financial_report(records, start_date, end_date)


def _content_disposition(filename: str) -> str:
    fallback = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


@reports_router.get("/financial", response_model=FinancialReport)
def financial_report(
    month: Optional[str] = Query(None, description="Month to report (YYYY-MM); defaults to the current month"),
    session: SessionContext = Depends(require_session),
) -> FinancialReport:
    """Per-patient totals and the grand total for one calendar month."""
    report = _load_financial_report(session, month)
    return FinancialReport.model_validate(report)


@reports_router.get("/financial/export")
def export_financial_report(
    month: Optional[str] = Query(None, description="Month to export (YYYY-MM); defaults to the current month"),
    session: SessionContext = Depends(require_session),
) -> Response:
    report = _load_financial_report(session, month)
    filename = export_filename(report.start_date)
    content = export_report(report)
    logger.info("Exported %s for user %s", filename, session.user_id)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": _content_disposition(filename)},
    )
