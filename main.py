"""
Sales Notifier - Web Server Entry Point
=======================================

Run this to start the API and the admin dashboard:
    python main.py

Then open http://127.0.0.1:8000/admin in your browser and scan the
WhatsApp QR code shown there.

To pair from a terminal instead:
    python pair_device.py
"""

import uvicorn


def main():
    """Start the web server."""
    print("\n" + "=" * 50)
    print("   Sales Notifier - Admin Dashboard")
    print("=" * 50)
    print("\n   Starting server at http://127.0.0.1:8000/admin")
    print("   Press Ctrl+C to stop\n")

    # One worker: the WhatsApp session lives in this process
    uvicorn.run(
        "sales_notifier.web.app:app",
        host="127.0.0.1",
        port=8000,
        reload=False,
        log_level="info"
    )


if __name__ == "__main__":
    main()
