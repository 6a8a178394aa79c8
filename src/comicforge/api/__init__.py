"""Comicforge — FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request/response
models, and the request-scoped auth dependency.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request and response validation.
dependencies
    Bearer-token auth gate shared by protected routes.
"""
