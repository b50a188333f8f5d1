"""
FastAPI Dependencies

Services are built once in the lifespan handler and kept on app.state; these
getters hand them to the endpoints. Tests swap app.state.services for a
container wired with fakes.
"""

from fastapi import Request

from src.engines.admission.limiter import AdmissionController
from src.engines.inference.service import InferenceService
from src.engines.monitoring.monitor import AIPerformanceMonitor
from src.engines.recovery.engine import BackgroundRecoveryEngine
from src.modules.foods.repository import FoodRepository
from src.pipeline.container import ServiceContainer
from src.pipeline.submission import MealSubmissionPipeline

DEFAULT_CLIENT_IDENTIFIER = "127.0.0.1"

# Checked in order after X-Forwarded-For
_CLIENT_IP_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-client-ip")


# =============================================================================
# Service Container
# =============================================================================

def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_pipeline(request: Request) -> MealSubmissionPipeline:
    return get_services(request).pipeline


def get_inference(request: Request) -> InferenceService:
    return get_services(request).inference


def get_admission(request: Request) -> AdmissionController:
    return get_services(request).admission


def get_monitor(request: Request) -> AIPerformanceMonitor:
    return get_services(request).monitor


def get_recovery(request: Request) -> BackgroundRecoveryEngine:
    return get_services(request).recovery


def get_food_repository(request: Request) -> FoodRepository:
    return get_services(request).repository


# =============================================================================
# Caller Identity
# =============================================================================

def get_client_identifier(request: Request) -> str:
    """
    Rate limit identity for the caller.

    First hop of X-Forwarded-For, then CF-Connecting-IP, X-Real-IP and
    X-Client-IP, else 127.0.0.1.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in _CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()

    return DEFAULT_CLIENT_IDENTIFIER
