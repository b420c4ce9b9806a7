"""raptor_shared — Shared code for the Raptor portal Lambda functions.

Provides:
    - HS256 JWT issuing/verification for admin and driver callers
    - DynamoDB client singleton and record store
    - Entity schema registry, field sanitizer and admin CRUD dispatcher
    - Driver temp-log session/entry engine
    - HTTP response helpers with CORS and the error envelope
"""

__version__ = "1.0.0"
