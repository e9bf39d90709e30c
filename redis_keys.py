REDIS_ROOMS_KEY = "signal:rooms" # json object - room code -> room
REDIS_OFFLINE_KEY = "signal:offline" # json object - room code -> list of offline messages
REDIS_CALLS_KEY = "signal:calls" # list - one json call record per entry, oldest first, appended with RPUSH
REDIS_STATS_KEY = "signal:stats" # hash - aggregate counters

# All four keys are written together in one MULTI/EXEC pipeline so a
# restart never loads a call record without the matching room removal.

# **Example `signal:stats` hash fields**
# - `totalConnections` = integer
# - `totalCalls` = integer
# - `failedCalls` = integer
