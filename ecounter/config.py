"""
Configuration for the energy counter
Reads from environment variables with sensible defaults
"""
import os
from pathlib import Path

# Output
OUTPUT_DIR = Path(os.getenv('ECOUNTER_DIR', '/tmp/ecounter'))  # tmpfs/ramfs recommended

# Sampling
SAMPLE_INTERVAL = int(os.getenv('ECOUNTER_INTERVAL', '10'))  # seconds

# Node power probe (overhead estimation)
NODE_POWER_CMD = os.getenv('ECOUNTER_NODE_POWER_CMD', '')
NODE_POWER_URL = os.getenv('ECOUNTER_NODE_POWER_URL', '')
NODE_POWER_FIELD = os.getenv('ECOUNTER_NODE_POWER_FIELD', '')
PROBE_TIMEOUT = float(os.getenv('ECOUNTER_PROBE_TIMEOUT', '10'))  # seconds

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
