"""
Centralized path configuration for WatchDucker
Ensures all modules use consistent, volume-mounted paths
"""

import os

# The /app/data directory is mounted as a volume when running in a container
DATA_DIR = os.getenv('WATCHDUCKER_DATA_DIR', '/app/data')

# For development/testing outside Docker
if not os.getenv('WATCHDUCKER_DATA_DIR') and not os.path.exists('/app'):
    # Running locally, use relative paths
    DATA_DIR = './data'

LOG_DIR = os.path.join(DATA_DIR, 'logs')

# Notification channel settings (push.yaml)
NOTIFY_CONFIG_FILE = os.getenv('WATCHDUCKER_NOTIFY_CONFIG', os.path.join(DATA_DIR, 'push.yaml'))
