"""Top-level package for the receipt dashboard backend.

The package contains the cache and query layer for the receipt
dashboard (a keyed stale-while-revalidate store, list and statistics
view controllers and the cross-view invalidation coordinator), the
receipt data source over SQLAlchemy, and a small FastAPI application
that proxies receipt image uploads to the extraction webhook.

To run the API locally you can execute:

```bash
uvicorn fisboard.api.main:app --reload --app-dir backend
```

The default configuration uses a local SQLite database stored in
``fisboard.db``. You can override configuration values using
environment variables or a ``.env`` file at the project root.
"""

__version__ = "1.0.0"

__all__: list[str] = ["__version__"]
