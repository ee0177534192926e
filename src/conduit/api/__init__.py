"""FastAPI REST API for Conduit.

This module provides the HTTP layer: ingestion with admission control,
usage statistics, webhook registration, execution logs and test deliveries.

Example:
    ```python
    import uvicorn
    from conduit.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn conduit.api:app --reload
    ```
"""

from .app import app, create_app
from .router import router

__all__ = [
    "app",
    "create_app",
    "router",
]
