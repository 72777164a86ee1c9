"""Domain exceptions shared by the API and worker layers"""

from typing import Optional


class PrunarrError(Exception):
    """Base class for domain errors"""
    status_code = 500


class ValidationError(PrunarrError):
    """Malformed rule or request, rejected before any state change"""
    status_code = 400


class NotFoundError(PrunarrError):
    """Unknown rule, media or pending deletion id"""
    status_code = 404


class ConflictError(PrunarrError):
    """Transition refused because the item is not in the expected state"""
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class IntegrationError(PrunarrError):
    """Downstream integration unreachable, rejected the request or timed out"""
    status_code = 502

    def __init__(self, integration: str, message: str):
        super().__init__(f"{integration}: {message}")
        self.integration = integration
        self.message = message
