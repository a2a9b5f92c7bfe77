"""
Secure Logging Utility - HIPAA-Compliant
Structured logging helpers shared by the escalation engine

SECURITY REQUIREMENTS:
- No contact details (phone numbers, emails, push tokens) in logs
- Structured audit entries for every alert state transition
- Sanitized error messages
"""

import logging
import os
import re
import sys
import json
from typing import Optional, Dict, Any
from datetime import datetime, timezone

# Configure root logger
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module"""
    return logging.getLogger(name)


class SecureLogger:
    """
    Secure logging wrapper that prevents sensitive data leakage
    """
    
    # Patterns that indicate sensitive data
    SENSITIVE_PATTERNS = [
        r'password',
        r'secret',
        r'token',
        r'credential',
        r'auth',
        r'api[_-]?key',
        r'authorization',
        r'bearer',
        r'phone',
        r'email',
        r'ssn',
    ]
    
    EMAIL_RE = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
    PHONE_RE = re.compile(r'\+?\d[\d\s().-]{7,}\d')
    TOKEN_RE = re.compile(r'\b[A-Za-z0-9_:-]{32,}\b')
    
    @classmethod
    def sanitize_message(cls, message: str) -> str:
        """
        Sanitize log message to remove sensitive information
        
        Args:
            message: Original log message
            
        Returns:
            Sanitized log message
        """
        message = cls.EMAIL_RE.sub('[email]', message)
        message = cls.TOKEN_RE.sub('[token]', message)
        message = cls.PHONE_RE.sub('[phone]', message)
        
        # Remove stack traces (keep first line only)
        if '\n' in message:
            message = message.split('\n')[0] + ' [stack trace truncated]'
        
        return message
    
    @classmethod
    def should_sanitize(cls, message: str) -> bool:
        """Check if message contains sensitive patterns"""
        message_lower = message.lower()
        if any(re.search(pattern, message_lower) for pattern in cls.SENSITIVE_PATTERNS):
            return True
        return bool(cls.EMAIL_RE.search(message) or cls.PHONE_RE.search(message))
    
    @classmethod
    def log(cls, logger: logging.Logger, level: int, message: str, **kwargs):
        """Log through the sanitizer"""
        if cls.should_sanitize(message):
            logger.log(level, f"[SANITIZED] {cls.sanitize_message(message)}", **kwargs)
        else:
            logger.log(level, message, **kwargs)


def mask_destination(destination: Optional[str]) -> str:
    """Keep the last four characters of a phone number, email or push token"""
    if not destination:
        return "<none>"
    if len(destination) <= 4:
        return "***"
    return f"***{destination[-4:]}"


def log_error(message: str, logger_name: Optional[str] = None, exc_info: bool = False):
    """Log error message securely"""
    logger = get_logger(logger_name or __name__)
    SecureLogger.log(logger, logging.ERROR, message, exc_info=exc_info)


def log_audit(event_type: str, user_id: Optional[str], details: Dict[str, Any]):
    """
    Log audit event with structured data
    
    Args:
        event_type: Type of audit event
        user_id: User ID (if applicable)
        details: Additional event details
    """
    logger = get_logger("audit")
    audit_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "user_id": user_id,
        "details": details
    }
    logger.info(f"[AUDIT] {json.dumps(audit_entry, default=str)}")
