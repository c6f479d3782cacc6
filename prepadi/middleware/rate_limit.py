"""
Rate limiting using slowapi
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
import structlog

logger = structlog.get_logger()

# Create limiter instance
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000/hour", "100/minute"]
)

AI_EXTRACTION_LIMIT = "5/minute"
UPLOAD_PARSE_LIMIT = "30/minute"


def ai_extraction_limit():
    """Rate limit for AI extraction endpoints"""
    return limiter.limit(AI_EXTRACTION_LIMIT)


def upload_parse_limit():
    """Rate limit for document upload and bulk parsing endpoints"""
    return limiter.limit(UPLOAD_PARSE_LIMIT)
