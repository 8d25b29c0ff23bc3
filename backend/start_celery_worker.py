#!/usr/bin/env python3
"""Start the import worker with suppressed superuser warnings for containers."""

import sys
import warnings

from celery.bin.celery import main as celery_main

warnings.filterwarnings("ignore", category=UserWarning, message=".*superuser privileges.*")
warnings.filterwarnings("ignore", category=RuntimeWarning, message=".*superuser privileges.*")

if __name__ == "__main__":
    # Solo pool: the conversion lock already serializes converter runs
    sys.argv = [
        "celery",
        "-A",
        "table_importer.workers.celery_app.celery_app",
        "worker",
        "--loglevel=info",
        "--queues=imports",
        "--pool=solo",
        "--without-mingle",
        "--without-gossip",
    ] + sys.argv[1:]
    sys.exit(celery_main())
