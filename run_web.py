#!/usr/bin/env python3
"""
Run script for the Neyasbook backend.
"""
import sys
from pathlib import Path

# Add the src directory to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root / 'src'))

from neyasbook.api import create_app

if __name__ == '__main__':
    app = create_app()
    port = app.config['PORT']
    print("=" * 60)
    print("Neyasbook Backend")
    print("=" * 60)
    print(f"Starting server on http://0.0.0.0:{port}")
    print("Press Ctrl+C to stop")
    print("=" * 60)
    app.run(host='0.0.0.0', port=port, debug=False, threaded=True)
