# app/api/router.py
from fastapi import APIRouter
from app.api import (
    routes_pharmacy_stock,
    routes_pharmacy_intent,
    routes_pharmacy_sales,
    routes_pharmacy_reports,
)

api_router = APIRouter()

api_router.include_router(routes_pharmacy_stock.router)
api_router.include_router(routes_pharmacy_intent.router)
api_router.include_router(routes_pharmacy_sales.router)
api_router.include_router(routes_pharmacy_reports.router)
