#!/usr/bin/env python3
"""
Development server runner for the Anonymous Copyright Registry API
Includes auto-reload, logging, and environment checking
"""

import os
import sys
from pathlib import Path

import uvicorn

# Add the parent directory to Python path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from copyright_registry import config


def check_environment():
    """Check the environment for a consistent backend configuration."""
    optional_vars = [
        "REGISTRY_OWNER",
        "REGISTRY_ADDRESS",
        "FHE_BACKEND",
        "FHE_RELAYER_URL",
        "EVENT_STORE",
        "DISPUTE_MISMATCH_WINNER",
        "API_HOST",
        "API_PORT",
        "DEBUG",
    ]

    if config.FHE_BACKEND not in ("mock", "relayer"):
        print(f"❌ Unknown FHE_BACKEND: {config.FHE_BACKEND}")
        return False

    if config.EVENT_STORE == "postgres" and not os.getenv("REGISTRY_DB_DSN"):
        print("❌ EVENT_STORE=postgres requires REGISTRY_DB_DSN")
        return False

    if config.DISPUTE_MISMATCH_WINNER not in ("registrant", "none"):
        print(f"❌ Unknown DISPUTE_MISMATCH_WINNER: {config.DISPUTE_MISMATCH_WINNER}")
        return False

    print("✅ Configuration is consistent")

    print("\n📋 Optional configurations:")
    for var in optional_vars:
        print(f"  {var}: {os.getenv(var, 'Not set')}")

    return True


def check_event_store():
    """Verify the event store is reachable when it is persistent."""
    if config.EVENT_STORE != "postgres":
        print("✅ Using in-memory event store")
        return True

    from copyright_registry.core.database import check_database_connection
    if check_database_connection():
        print("✅ Event store connection successful")
        return True

    print("❌ Event store connection failed")
    print("Please check REGISTRY_DB_DSN and run scripts/init_db.py")
    return False


def main():
    """Main entry point for development server."""
    print("🔏 Anonymous Copyright Registry - Development Server")
    print("=" * 50)

    if not check_environment():
        sys.exit(1)

    if not check_event_store():
        sys.exit(1)

    host = config.API_HOST
    port = config.API_PORT
    debug = os.getenv("DEBUG", "true").lower() == "true"

    print(f"\n🚀 Starting development server...")
    print(f"   Host: {host}")
    print(f"   Port: {port}")
    print(f"   Debug: {debug}")
    print(f"   FHE backend: {config.FHE_BACKEND}")
    print(f"   Docs: http://{host}:{port}/docs")
    print("\n⏹️  Press Ctrl+C to stop the server")
    print("=" * 50)

    try:
        uvicorn.run(
            "copyright_registry.main:app",
            host=host,
            port=port,
            reload=debug,
            log_level="debug" if debug else "info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n🛑 Server stopped by user")


if __name__ == "__main__":
    main()
