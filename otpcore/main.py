import logging

from fastapi import FastAPI

from otpcore.database import init_db
from otpcore.routers import otp

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="One-time pin service")

app.include_router(otp.router, prefix="/api")
app.include_router(otp.router)  # Compatibility for clients calling /otp/* without /api.


@app.on_event("startup")
def startup() -> None:
    init_db()


@app.get("/")
def root():
    return {"status": "OTP service running"}
