#!/usr/bin/env python3
"""
Development server launcher for the AI Gateway API.

This script starts the FastAPI server with the host and port from the
gateway config. For production, you'd use a proper ASGI server deployment.
"""

import uvicorn
from pathlib import Path

from gateway.config import load_settings

project_root = Path(__file__).parent
package_path = project_root / "gateway"

if __name__ == "__main__":
    settings = load_settings()
    host, port = settings.server.host, settings.server.port
    development = not settings.is_production

    print("Starting AI Gateway API Server")
    print(f"Project root: {project_root}")
    print(f"Environment: {settings.environment}")
    print(f"Server will be available at: http://localhost:{port}")
    print(f"Health check at: http://localhost:{port}/health")
    print(f"API info at: http://localhost:{port}/api/info")
    print(f"API documentation at: http://localhost:{port}/docs")
    print("\n" + "="*50 + "\n")

    uvicorn.run(
        "gateway.api.main:app",
        host=host,
        port=port,
        reload=development,  # Auto-reload on code changes (development only)
        reload_dirs=[str(package_path)] if development else None,
        log_level="info"
    )
