#!/usr/bin/env python3
"""Start a Celery worker for bulk jobs and search sync."""

import logging
import sys
import warnings

from celery.bin import worker

# Suppress the superuser privilege warning in containers
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from catalog.core.config import get_settings
from catalog.workers.celery_app import celery_app

if __name__ == '__main__':
    logging.basicConfig(level=get_settings().log_level.upper())

    worker_app = worker.worker(app=celery_app)

    # Jobs run one at a time per worker; chunks are sequential within a job
    sys.argv = [
        'celery',
        '-A', 'catalog.workers.celery_app.celery_app',
        'worker',
        '--loglevel=info',
        '--queues=imports,search-sync',
        '--pool=solo',
        '--without-mingle',
        '--without-gossip',
    ] + sys.argv[1:]

    worker_app.run()
