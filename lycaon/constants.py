DB_SCHEMA = "lycaon"

# Row id in the counters table backing incident numbers
INCIDENT_COUNTER_ID = "incident"

DEFAULT_CHANNEL_PREFIX = "inc"

# Slack rejects channel names longer than this
CHANNEL_NAME_MAX_LENGTH = 80

INCIDENT_CREATED_NOTE = "Incident created"
