"""Redis Lua scripts for the shared counter store.

These scripts provide atomic operations so that concurrent relay
instances never both observe the first request of a window.
"""

# Atomic fixed-window increment.
# INCR creates the key at 1 when missing (or after it expired). A key with
# no TTL is either brand new or was written without one; either way it is
# (re)started as the first request of a fresh window.
# Returns {count, remaining_ttl_ms}.
INCREMENT_SCRIPT = """
    local key = KEYS[1]
    local window_ms = tonumber(ARGV[1])

    local count = redis.call('INCR', key)
    local ttl = redis.call('PTTL', key)

    if ttl < 0 then
        redis.call('SET', key, 1, 'PX', window_ms)
        count = 1
        ttl = window_ms
    end

    return {count, ttl}
"""
