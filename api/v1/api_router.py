# app/api/v1/router.py
from fastapi import APIRouter
from api.v1.endpoints import (
    # Donations & Payments
    donation,
)

api_router = APIRouter()

# ========== Donations & Payments ==========
api_router.include_router(donation.router, prefix="/donation", tags=["Donations & Payments"])
