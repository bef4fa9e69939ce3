from .exception_handler import docsynth_exception_handler
from .request_context import RequestContextMiddleware

__all__ = ["docsynth_exception_handler", "RequestContextMiddleware"]
