"""
Core application: logging, error handling, request IDs and admission throttling.
"""
