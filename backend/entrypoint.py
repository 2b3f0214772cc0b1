"""
Entrypoint for running the backend server.
On Windows the selector event loop is required by the async database drivers.
"""
import asyncio
import sys

# Must be set before any asyncio operations
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from wishfund.core.config import settings
from wishfund.main import app
import uvicorn

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.log_level.lower())
