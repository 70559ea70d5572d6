#!/usr/bin/env python3
"""
Snapix API Startup Script

Starts the FastAPI server with auto-reload for local development.
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the Snapix API server."""
    print("Starting Snapix API Server...")
    print("   Swagger UI:  http://localhost:8000/docs")
    print("   ReDoc:       http://localhost:8000/redoc")
    print("")

    if not Path(".env").exists():
        print("WARNING: No .env file found!")
        print("   Run `python generate_keys.py` to create one from .env.template,")
        print("   then set DATABASE_URL and the FACEBOOK_* variables.")
        print("")

    try:
        uvicorn.run(
            "snapix.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["snapix"],
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\nShutting down Snapix API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
