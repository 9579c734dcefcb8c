#!/usr/bin/env python3
"""
Development server runner for RemixRite API
Includes auto-reload and environment checking
"""

import os
import sys
import uvicorn
from pathlib import Path

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

from remixrite import config

OPTIONAL_VARS = [
    "API_HOST",
    "API_PORT",
    "DEBUG",
    "USE_GCS",
    "USE_PINATA",
    "GCS_BUCKET_NAME",
    "LEDGER_ENDPOINT",
    "OPENAI_MODEL",
    "REMIX_FEE",
]

def check_environment():
    """Check that the configured backend has what it needs."""
    if config.BACKEND == "postgres" and not os.getenv("DB_DSN"):
        print("Missing DB_DSN. Set it in .env, or run with REMIXRITE_BACKEND=memory.")
        return False

    print(f"Backend: {config.BACKEND}")
    print("\nOptional configurations:")
    for var in OPTIONAL_VARS:
        print(f"  {var}: {os.getenv(var, 'Not set')}")

    if not config.OPENAI_API_KEY:
        print("  OPENAI_API_KEY not set: tags and titles will use fallbacks")
    if not config.LEDGER_API_KEY:
        print("  LEDGER_API_KEY not set: ledger calls are unauthenticated")

    return True

def check_dependencies():
    """Check if all required dependencies are available."""
    required_modules = [
        "fastapi",
        "uvicorn",
        "psycopg2",
        "structlog",
        "requests",
        "openai",
        "google.cloud.storage",
        "multipart",
    ]

    missing_modules = []
    for module in required_modules:
        try:
            __import__(module)
        except ImportError:
            missing_modules.append(module)

    if missing_modules:
        print(f"Missing required Python modules: {', '.join(missing_modules)}")
        print("Please run: pip install -e .")
        return False

    print("All required dependencies found")
    return True

def main():
    """Main entry point for development server."""
    print("RemixRite - Development Server")
    print("=" * 50)

    if not check_environment():
        sys.exit(1)

    if not check_dependencies():
        sys.exit(1)

    if config.BACKEND == "postgres":
        from remixrite.core.database import Database
        database = Database(min_connections=1, max_connections=1)
        connected = database.check_connection()
        database.close()
        if not connected:
            print("Database connection failed. Run scripts/init_db.py or check DB_DSN.")
            sys.exit(1)
        print("Database connection successful")

    debug = os.getenv("DEBUG", "true").lower() == "true"

    print(f"\nStarting development server on http://{config.API_HOST}:{config.API_PORT}")
    print(f"   Docs: http://{config.API_HOST}:{config.API_PORT}/docs")
    print("=" * 50)

    try:
        uvicorn.run(
            "remixrite.main:app",
            host=config.API_HOST,
            port=config.API_PORT,
            reload=debug,
            log_level="debug" if debug else "info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")

if __name__ == "__main__":
    main()
