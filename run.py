#!/usr/bin/env python3
"""Convenience runner for the Strava video overlay tool.

Usage:
    python run.py --activity-id 123 --video ride.mp4 [--preview]
"""
import sys

from strava_overlay.main import main

if __name__ == "__main__":
    sys.exit(main())
