"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session
from bisyaroh_gateway.infrastructure.cache import TTLCache
from bisyaroh_gateway.infrastructure.database.session import get_db
from bisyaroh_gateway.services.digital_payments import DigitalPaymentService
from bisyaroh_gateway.services.payment_processor import PaymentProcessor
from bisyaroh_gateway.services.payment_queries import PaymentQueryService
from bisyaroh_gateway.services.timelines import TimelineService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_cache(request: Request) -> TTLCache:
    """Application-wide read cache created by create_app"""
    return request.app.state.cache


def get_payment_processor(db: Session = Depends(get_db), cache: TTLCache = Depends(get_cache)) -> PaymentProcessor:
    return PaymentProcessor(db, cache)


def get_query_service(db: Session = Depends(get_db), cache: TTLCache = Depends(get_cache)) -> PaymentQueryService:
    return PaymentQueryService(db, cache)


def get_timeline_service(db: Session = Depends(get_db), cache: TTLCache = Depends(get_cache)) -> TimelineService:
    return TimelineService(db, cache)


def get_digital_payment_service(
    db: Session = Depends(get_db), cache: TTLCache = Depends(get_cache)
) -> DigitalPaymentService:
    return DigitalPaymentService(db, cache)
