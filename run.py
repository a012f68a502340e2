#!/usr/bin/env python3
"""
General Ledger Entry Point

Starts the FastAPI server on the configured host and port (default 8091).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from ledger_core.config import get_config
from ledger_core.server import run_server


if __name__ == "__main__":
    config = get_config()
    print("📒 Starting General Ledger...")
    print("⚖️  Double-entry posting with period locks")
    print("🔒 Audit trail active")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\n👋 Shutting down General Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
