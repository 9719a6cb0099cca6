"""
Guestbook Backend: Application Package
=======================================

What: A small guestbook service backed by CouchDB.
How:  Layered the same way throughout:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← retries, error translation
    ├─────────────────────────────────────┤
    │            Schemas (Data)           │  ← Pydantic request/response models
    ├─────────────────────────────────────┤
    │   guestbook.couchdb (Persistence)   │  ← blocking CouchDB client + feeds
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
