"""vinteg_shared — Shared request pipeline for the VIntegCorp intranet Lambdas.

Provides:
    - Password hashing and HS256 session tokens
    - Per-client fixed-window rate limiting
    - Declared request shapes (pydantic) and the body validation wrapper
    - Ordered regex router with centralized error translation
    - HTTP response helpers with CORS and security headers
    - SQLAlchemy engine singleton and S3 client singleton
"""

__version__ = "1.0.0"
