"""REST API client modules."""
from automation_builder.client.api_client import APIClientError, MonoSendClient, UnauthorizedError

__all__ = ["APIClientError", "MonoSendClient", "UnauthorizedError"]
