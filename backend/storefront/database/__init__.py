"""
Database package initialization.

The package follows a modular structure:
- base: declarative base, mixins and portable column types
- connection: async engine, session factory and FastAPI session dependency
- models: ORM models for orders, products, stores and notification records
"""

# Import submodules explicitly when needed to avoid circular dependencies

__all__ = []
