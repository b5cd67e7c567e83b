#!/usr/bin/env python3
"""
Microfinance Loan System Entry Point

Starts the FastAPI server with settings from MICROFINANCE_* environment variables.
"""

import sys

from microfinance.api import run_server
from microfinance.config import get_config


if __name__ == "__main__":
    settings = get_config()
    print("Starting Microfinance Loan System...")
    print(f"Storage: {settings.database_url}")
    print(f"Audit mode: {settings.audit_mode}")
    print(f"API available at: http://localhost:{settings.api_port}")
    print(f"Documentation at: http://localhost:{settings.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Microfinance Loan System...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
