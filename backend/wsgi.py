"""
WSGI entry point for the custody ledger.

Used by `flask` (auto-discovered from backend/) and by WSGI servers.
"""

from custody import create_app

app = create_app()

if __name__ == "__main__":
    app.run(host="127.0.0.1", port=5000, debug=True)
