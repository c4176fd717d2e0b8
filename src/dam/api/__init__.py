"""HTTP API for the DAM webhook service.

Example:
    ```bash
    uvicorn dam.api:app --reload
    ```
"""

from .app import app, create_app
from .router import router

__all__ = ["app", "create_app", "router"]
