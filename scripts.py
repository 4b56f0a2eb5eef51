#!/usr/bin/env python3
"""Development scripts for the Bus Booking Platform."""

import subprocess
import sys


def start():
    """Start the development server."""
    subprocess.run([
        "uvicorn",
        "bus_booking_platform.main:app",
        "--host", "0.0.0.0",
        "--port", "8000",
        "--reload"
    ])


def worker():
    """Start a Celery worker with the beat scheduler for background polling."""
    subprocess.run([
        "celery",
        "-A", "bus_booking_platform.tasks.celery_app",
        "worker",
        "--beat",
        "--loglevel=info"
    ])


def seed():
    """Load the sample bus fleet."""
    subprocess.run([sys.executable, "miscellaneous/seed_buses.py"])


def test():
    """Run the test suite."""
    subprocess.run(["pytest", "tests/"])


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts.py <command>")
        print("Commands: start, worker, seed, test")
        sys.exit(1)

    command = sys.argv[1].replace("-", "_")
    if hasattr(sys.modules[__name__], command):
        getattr(sys.modules[__name__], command)()
    else:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
