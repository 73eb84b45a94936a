"""Run the GrowBox automation server (Flask + Socket.IO, threading mode)."""

import os
import sys

from app import create_app, socketio


def main() -> None:
    if sys.platform == "win32":
        sys.stdout.reconfigure(encoding="utf-8")

    app = create_app(start_runtime=True)

    port = int(os.environ.get("FLASK_RUN_PORT", 8000))
    host = os.environ.get("FLASK_RUN_HOST", "0.0.0.0")

    print(f"GrowBox automation starting on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    try:
        # socketio.run() instead of app.run() for WebSocket support
        socketio.run(
            app,
            host=host,
            port=port,
            debug=False,
            use_reloader=False,
            allow_unsafe_werkzeug=True,
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")


if __name__ == "__main__":
    main()
