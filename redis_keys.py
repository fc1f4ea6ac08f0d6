REDIS_INSTANCE_ONLINE_KEY = "chat:online:{instance_id}" # instance id - online connections on that instance
REDIS_INSTANCE_PATTERN = "chat:online:*"
REDIS_MATCHES_TOTAL_KEY = "chat:stats:matches_total" # counter across all instances
REDIS_TAG_MATCHES_KEY = "chat:stats:tag_matches" # sorted set - tag -> number of matches sharing it

# **Example layout**
# - `chat:online:web-1` = "42" (expires after PRESENCE_TTL_SECONDS unless refreshed)
# - `chat:stats:matches_total` = "1337"
# - `chat:stats:tag_matches` = {"music": 120, "art": 44}
