"""
Web Audit API — Application Package
=====================================

Layered the usual way:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← validation, collaborators
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

Collaborators behind the services: PostgreSQL, Razorpay, Gemini,
PageSpeed Insights, the scraping microservice and an SMTP relay.
"""

__version__ = "1.0.0"
