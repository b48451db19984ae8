"""Services package: business logic on top of the query builder.

Import the concrete modules directly (``spiel.services.read_service``,
``spiel.services.write_service``, ``spiel.services.pageable``); the query
builder itself depends on ``pageable``.
"""
