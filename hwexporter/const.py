"""
Application constants and metadata.
"""

# Application info
APP_NAME = "Hardware Exporter"
APP_VERSION = "0.1.0"
APP_URL = "https://github.com/hwexporter/hwexporter"

# Default values
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_KEEPALIVE = 60
DEFAULT_COLLECT_INTERVAL = 30.0
DEFAULT_QUEUE_SIZE = 10
DEFAULT_COUNTERS_FILE = "/etc/hwexporter/default-counters.csv"
DEFAULT_DOCKER_SOCKET = "/var/run/docker.sock"
