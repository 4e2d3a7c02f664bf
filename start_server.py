"""
Start the transcript gateway for local development
"""
import sys

import uvicorn

from app.core.config import settings

if __name__ == "__main__":
    print("Starting Transcript Gateway...")
    print(f"Python: {sys.version}")
    print(f"Strategy mode: {settings.strategy_mode}, AI enabled: {settings.ai_enabled}")

    try:
        uvicorn.run(
            "app.main:app",
            host="127.0.0.1",
            port=8000,
            reload=settings.debug,
            log_level=settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")
    except Exception as e:
        print(f"\nError starting server: {e}")
        raise
