#!/usr/bin/env python3
"""
Run the Slotbook public booking API with the development server
"""

import os

from scheduling.main import create_app

if __name__ == '__main__':
    os.environ.setdefault('SLOTBOOK_ENV', 'development')
    port = int(os.environ.get('PORT', '5001'))

    app = create_app()

    print("Starting Slotbook...")
    print(f"Public booking API at: http://localhost:{port}/api/book/<booking_slug>")
    print("\nPress CTRL+C to stop the server")

    # The reloader would start a second side effect queue in the child process
    app.run(host='0.0.0.0', port=port, debug=True, use_reloader=False)
