"""Turn an OpenAPI/Swagger document into callable tools and dispatch them over HTTP."""

__version__ = "0.1.0"
