from .request_id import RequestIDMiddleware, get_request_id, get_client_ip

__all__ = [
    "RequestIDMiddleware",
    "get_request_id",
    "get_client_ip",
]
