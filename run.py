#!/usr/bin/env python3
"""
Entry point for the Scorekeeper service.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    DATABASE_URL: SQLAlchemy database URL
    REDIS_URL: Redis relay for live events (optional)
"""
import os
import logging

from scorekeeper.app import create_app

logger = logging.getLogger(__name__)


def run_scorekeeper():
    """Run the scorekeeper API."""
    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"Starting Scorekeeper on port {port}...")
    logger.info(f"Listening on 0.0.0.0:{port} (debug={debug})")
    app.run(host='0.0.0.0', port=port, debug=debug, threaded=True)


if __name__ == '__main__':
    run_scorekeeper()
