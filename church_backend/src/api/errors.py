"""
Domain error taxonomy. Each error carries the HTTP status it maps to at the API boundary;
the handlers in main.py render every error as `{"error": message}`.
"""
from starlette import status


class ChurchApiError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidCredentials(ChurchApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid credentials"


class NoRecipients(ChurchApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "No recipients selected"


class EmptyMessage(ChurchApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Message is required"


class NoEligibleRecipients(ChurchApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "No eligible recipients found"


class ProviderUnavailable(ChurchApiError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "SMS service not configured"
