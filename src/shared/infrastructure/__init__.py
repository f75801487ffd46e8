"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Circuit breaker for outbound API clients
"""
