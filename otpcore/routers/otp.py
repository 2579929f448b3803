from contextlib import contextmanager

from fastapi import APIRouter, HTTPException, status

from otpcore.schemas.errors import (
    DuplicateKeyError,
    InvalidArgumentError,
    InvalidConfigurationError,
    OtpExpiredError,
    OtpNotFoundError,
)
from otpcore.schemas.otp import (
    OtpSettings,
    ResendPinRequest,
    ResendPinWithConfigRequest,
    SendPinRequest,
    SendPinResponse,
    SendPinToPersonRequest,
    SendPinWithConfigRequest,
    VerifyPinRequest,
    VerifyPinResponse,
    VerifyPinWithConfigRequest,
)
from otpcore.services.otp import otp_engine

router = APIRouter(prefix="/otp", tags=["otp"])

@contextmanager
def _http_errors():
    try:
        yield
    except (InvalidArgumentError, InvalidConfigurationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except OtpNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except OtpExpiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_410_GONE,
            detail=str(exc),
        ) from exc
    except DuplicateKeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc


@router.post("/send", response_model=SendPinResponse, response_model_exclude_none=True)
def send_pin(payload: SendPinRequest) -> SendPinResponse:
    with _http_errors():
        return otp_engine.send_pin(
            payload.send_to,
            payload.send_type,
            lifetime=payload.lifetime,
            recipient_id=payload.recipient_id,
            recipient_type=payload.recipient_type,
            action_type=payload.action_type,
        )


@router.post(
    "/send-with-config",
    response_model=SendPinResponse,
    response_model_exclude_none=True,
)
def send_pin_with_config(payload: SendPinWithConfigRequest) -> SendPinResponse:
    with _http_errors():
        return otp_engine.send_pin_with_config(
            payload.module,
            payload.config_name,
            payload.send_to,
            source_entity_id=payload.source_entity_id,
        )


@router.post(
    "/send-to-person",
    response_model=SendPinResponse,
    response_model_exclude_none=True,
)
def send_pin_to_person(payload: SendPinToPersonRequest) -> SendPinResponse:
    with _http_errors():
        return otp_engine.send_pin_to_person_with_config(
            payload.module,
            payload.config_name,
            payload.person_id,
            source_entity_id=payload.source_entity_id,
        )


@router.post("/resend", response_model=SendPinResponse, response_model_exclude_none=True)
def resend_pin(payload: ResendPinRequest) -> SendPinResponse:
    with _http_errors():
        return otp_engine.resend_pin(**payload.model_dump())


@router.post(
    "/resend-with-config",
    response_model=SendPinResponse,
    response_model_exclude_none=True,
)
def resend_pin_with_config(payload: ResendPinWithConfigRequest) -> SendPinResponse:
    with _http_errors():
        return otp_engine.resend_pin_with_config(**payload.model_dump())


@router.post("/verify", response_model=VerifyPinResponse, response_model_exclude_none=True)
def verify_pin(payload: VerifyPinRequest) -> VerifyPinResponse:
    with _http_errors():
        return otp_engine.verify_pin(**payload.model_dump())


@router.post(
    "/verify-with-config",
    response_model=VerifyPinResponse,
    response_model_exclude_none=True,
)
def verify_pin_with_config(payload: VerifyPinWithConfigRequest) -> VerifyPinResponse:
    with _http_errors():
        return otp_engine.verify_pin_with_config(**payload.model_dump())


@router.get("/settings", response_model=OtpSettings)
def get_settings() -> OtpSettings:
    return otp_engine.get_settings()


@router.post("/settings")
def update_settings(payload: OtpSettings) -> dict:
    return {"updated": otp_engine.update_settings(payload)}
