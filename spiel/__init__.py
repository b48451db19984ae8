"""
Spiel catalog application package.

Layered like this:

  spiel/repositories/  query construction against the SQLAlchemy models in ``database``.
  spiel/services/      business logic: search, paging, optimistic updates, notifications.
  spiel/dto.py         validation of incoming payloads.
  spiel/exceptions.py  the domain errors and their HTTP status codes.

``spielapi_web`` creates the service instances once at import time; route
handlers and GraphQL resolvers open a session per request and pass it to
the services as their first argument.
"""
