#!/usr/bin/env python3
"""
WeatherTunes HTTP Server Runner
"""

import os

from dotenv import load_dotenv

from weathertunes.crosscutting.logging import setup_logging
from weathertunes.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    load_dotenv()
    setup_logging(os.getenv('WEATHERTUNES_LOG_LEVEL', 'INFO'))
    server = HTTPServer(
        host=os.getenv('WEATHERTUNES_HOST', 'localhost'),
        port=int(os.getenv('WEATHERTUNES_PORT', '3000')),
        debug=os.getenv('WEATHERTUNES_DEBUG', '0') == '1'
    )
    server.run()


if __name__ == '__main__':
    main()
