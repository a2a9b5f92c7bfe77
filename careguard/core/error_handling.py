"""
Error Handling & Sanitization - HIPAA-Compliant
Prevents information leakage through error messages

SECURITY REQUIREMENTS:
- No sensitive data in error responses
- Engine errors mapped to stable status codes (404/403/409)
- Detailed errors only in secure logs
- Consistent error format
"""

import logging
import uuid
from typing import Optional, Dict, Any
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from careguard.core.exceptions import EscalationEngineError
from careguard.core.logging import log_error

logger = logging.getLogger(__name__)


class ErrorSanitizer:
    """Sanitizes errors to prevent information leakage"""
    
    SENSITIVE_PATTERNS = [
        'password', 'secret', 'token', 'key', 'credential',
        'database', 'connection', 'sql', 'query', 'stack',
        'traceback', 'file', 'path', 'internal', 'server',
        'phone', 'email', '@',
    ]
    
    @staticmethod
    def sanitize_error(error: Exception, context: Optional[str] = None) -> Dict[str, Any]:
        """
        Sanitize error for client response
        
        Args:
            error: Exception instance
            context: Additional context
            
        Returns:
            Sanitized error dictionary
        """
        if isinstance(error, HTTPException):
            return {
                "error": error.detail,
                "status_code": error.status_code,
                "type": "http_exception"
            }
        
        if isinstance(error, EscalationEngineError):
            message = error.message
            if any(pattern in message.lower() for pattern in ErrorSanitizer.SENSITIVE_PATTERNS):
                message = "An error occurred processing your request"
            sanitized = {
                "error": message,
                "status_code": error.status_code,
                "type": error.error_type
            }
            if error.status_code >= 500:
                sanitized["error_id"] = ErrorSanitizer._generate_error_id()
            return sanitized
        
        if isinstance(error, (ValueError, PermissionError)):
            return {
                "error": "Validation error" if isinstance(error, ValueError) else "Access denied",
                "status_code": 400 if isinstance(error, ValueError) else 403,
                "type": "validation_error" if isinstance(error, ValueError) else "access_denied"
            }
        
        return {
            "error": "An error occurred processing your request",
            "status_code": 500,
            "type": "internal_error",
            "error_id": ErrorSanitizer._generate_error_id()
        }
    
    @staticmethod
    def _generate_error_id() -> str:
        """Generate a unique error ID for tracking"""
        return str(uuid.uuid4())[:8]


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to catch and sanitize all errors
    Prevents information leakage while maintaining audit trail
    """
    
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            error_id = ErrorSanitizer._generate_error_id()
            log_error(
                f"Unhandled exception [{error_id}]: {type(e).__name__}: {str(e)}",
                logger_name="error_handler",
                exc_info=True
            )
            
            sanitized = ErrorSanitizer.sanitize_error(e)
            sanitized["error_id"] = error_id
            
            return JSONResponse(
                status_code=sanitized["status_code"],
                content=sanitized
            )


async def engine_error_handler(request: Request, exc: EscalationEngineError) -> JSONResponse:
    """Answer engine errors with their mapped status code"""
    if exc.status_code >= 500:
        log_error(f"Engine error on {request.url.path}: {type(exc).__name__}", logger_name="error_handler")
    else:
        logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}")
    sanitized = ErrorSanitizer.sanitize_error(exc)
    return JSONResponse(status_code=sanitized["status_code"], content=sanitized)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the sanitizing middleware and engine error handlers"""
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_exception_handler(EscalationEngineError, engine_error_handler)
