#!/usr/bin/env python3
"""
ClusterFeed - Feed Cluster Aggregator
====================================

Entry point for running from a source checkout.

Usage:
    python main.py --help                    # Show all commands
    python main.py check-config              # Validate configuration
    python main.py resolve clusters/news.txt # Dry-run source resolution
    python main.py run                       # Merge every cluster
"""

import sys
from pathlib import Path

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from clusterfeed.cli import main


if __name__ == "__main__":
    main()
