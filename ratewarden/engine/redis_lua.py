"""Redis Lua scripts for the bucket-and-block engine.

Redis runs each script atomically, so concurrent callers on any number of
hosts can never interleave their read-modify-write of the same bucket. Both
scripts read the clock with TIME inside the server, which keeps every caller
on one clock.

Numbers leave the scripts as decimal strings: Redis would truncate a Lua
number reply to an integer.

Keys (all scripts):
    KEYS[1] - bucket level
    KEYS[2] - bucket last updated timestamp
    KEYS[3] - lockout marker, holding the lockout expiry timestamp
"""

# Leak the bucket, add tokens, cap at capacity and start a lockout on
# overflow. A running lockout short-circuits everything: the bucket is left
# untouched and the lockout is never extended.
#   ARGV[1] - capacity
#   ARGV[2] - leak rate, tokens per second
#   ARGV[3] - lockout duration in seconds, 0 disables lockouts
#   ARGV[4] - tokens to add, may be 0 (ping) or negative (drain)
#   ARGV[5] - seconds of slack added to the bucket TTL
# Returns {remaining lockout seconds, new level}
APPLY_SCRIPT = """
local level_key = KEYS[1]
local updated_key = KEYS[2]
local block_key = KEYS[3]
local capacity = tonumber(ARGV[1])
local leak_rate = tonumber(ARGV[2])
local block_for = tonumber(ARGV[3])
local n_tokens = tonumber(ARGV[4])
local ttl_margin = tonumber(ARGV[5])

local t = redis.call('TIME')
local now = tonumber(t[1]) + (tonumber(t[2]) / 1000000)

local blocked_until = tonumber(redis.call('GET', block_key))
if blocked_until and blocked_until > now then
    local current = tonumber(redis.call('GET', level_key)) or 0
    return {string.format('%.6f', blocked_until - now), string.format('%.6f', current)}
end

local level = tonumber(redis.call('GET', level_key)) or 0
local last_updated = tonumber(redis.call('GET', updated_key)) or now

local elapsed = math.max(0, now - last_updated)
local decayed = math.max(0, level - (elapsed * leak_rate))
local tentative = math.max(0, decayed + n_tokens)

local ttl = math.ceil(capacity / leak_rate) + ttl_margin
local remaining = 0
if tentative > capacity then
    tentative = capacity
    if block_for > 0 then
        remaining = block_for
        redis.call('SET', block_key, string.format('%.6f', now + block_for),
            'PX', math.ceil(block_for * 1000))
    end
end

redis.call('SET', level_key, string.format('%.6f', tentative), 'EX', ttl)
redis.call('SET', updated_key, string.format('%.6f', now), 'EX', ttl)

return {string.format('%.6f', remaining), string.format('%.6f', tentative)}
"""

# Same leak computation as APPLY_SCRIPT without writing anything.
#   ARGV[1] - leak rate, tokens per second
# Returns {1 if locked out else 0, remaining lockout seconds, leaked level}
PEEK_SCRIPT = """
local level_key = KEYS[1]
local updated_key = KEYS[2]
local block_key = KEYS[3]
local leak_rate = tonumber(ARGV[1])

local t = redis.call('TIME')
local now = tonumber(t[1]) + (tonumber(t[2]) / 1000000)

local level = tonumber(redis.call('GET', level_key)) or 0
local blocked_until = tonumber(redis.call('GET', block_key))
if blocked_until and blocked_until > now then
    return {1, string.format('%.6f', blocked_until - now), string.format('%.6f', level)}
end

local last_updated = tonumber(redis.call('GET', updated_key)) or now
local elapsed = math.max(0, now - last_updated)
local decayed = math.max(0, level - (elapsed * leak_rate))

return {0, '0', string.format('%.6f', decayed)}
"""
