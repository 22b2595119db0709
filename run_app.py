#!/usr/bin/env python3
"""
Development runner: loads .env and starts the Flask server
"""
import os

from dotenv import load_dotenv

# Load environment before the app reads any settings
load_dotenv('.env')

from momentum_backend.app import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 3001))
    print(f"Starting Momentum AI API on port {port}...")
    try:
        app.run(
            host="0.0.0.0",
            port=port,
            debug=os.getenv('DEBUG', 'False').lower() == 'true',
            threaded=True,
            use_reloader=False
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")
