"""
api/__init__.py

FastAPI routers: message processing (sync and queued), "again" reprocessing and
eligible model listing.
"""
