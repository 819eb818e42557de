"""
GameTrack application package.

  app/models.py    comparison result types (dataclasses with ``to_dict()``).
  app/helpers.py   ``best_effort`` and ``BatchThrottle``.
  app/services/    business logic for credential lookup, per-platform
                   adapters, profile and achievement comparison.

``gametrack.py`` (CLI) and ``gametrack_web.py`` (Flask) build a
``ComparisonService`` and pass it a SQLAlchemy session per call.
"""
