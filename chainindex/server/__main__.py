"""
chainindex server entry point.

Usage:
    python -m chainindex.server
    python -m chainindex.server --host 0.0.0.0 --port 8080
"""

import argparse
import sys


def main():
    parser = argparse.ArgumentParser(description="chainindex server")
    parser.add_argument("--host", default=None, help="Server host (default: CHAININDEX_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Server port (default: CHAININDEX_PORT)")
    args = parser.parse_args()

    try:
        import uvicorn
        from chainindex.core.config import get_settings
        from chainindex.server.app import create_app

        app = create_app()
        settings = get_settings()
        uvicorn.run(app, host=args.host or settings.host, port=args.port or settings.port)
    except KeyboardInterrupt:
        print("\nServer stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
