"""
FastAPI routers for the import pipeline and the job queue.

Each module owns one area of the API and exposes a ``router`` that the
application registers in ``import_hub.main``.
"""
