"""Installation and invocation of the engine's Lua scripts.

Scripts are addressed by the SHA1 of their source, which is how Redis
identifies them in EVALSHA. The identifiers are computed once at import, so
a change to a script's source always changes its identifier and a rolling
deploy never calls an older body by mistake.
"""

import hashlib
from typing import Any, Sequence

from redis.exceptions import NoScriptError

from ratewarden.core.logging import get_logger
from ratewarden.engine.redis_lua import APPLY_SCRIPT, PEEK_SCRIPT
from ratewarden.exceptions import ScriptHashMismatch

logger = get_logger(__name__)


class LuaScript:
    """A Lua script installed on demand in Redis.

    Usage:
        result = await APPLY.invoke(redis, keys=[...], args=[...])

    ``invoke`` calls the script by hash. If the server has never seen it,
    the source is installed, its hash checked, and the call retried once.
    Installing the same source concurrently from many processes is harmless
    because Redis stores scripts by content hash.
    """

    def __init__(self, name: str, source: str):
        self.name = name
        self.source = source
        self.sha = hashlib.sha1(source.encode("utf-8")).hexdigest()

    def __repr__(self) -> str:
        return f"LuaScript(name={self.name!r}, sha={self.sha!r})"

    async def load(self, redis: Any) -> str:
        """Install the script source and verify the hash Redis reports.

        Raises:
            ScriptHashMismatch: If Redis derived a different identifier.
        """
        sha = await redis.script_load(self.source)
        if isinstance(sha, bytes):
            sha = sha.decode("ascii")
        if sha != self.sha:
            logger.error(
                f"Script {self.name} loaded with sha {sha}, expected {self.sha}"
            )
            raise ScriptHashMismatch(self.name, expected=self.sha, actual=sha)
        logger.info(f"Installed Lua script {self.name} ({self.sha})")
        return sha

    async def ensure_loaded(self, redis: Any) -> str:
        """Make sure the script exists in Redis and return its SHA1."""
        exists = await redis.script_exists(self.sha)
        if exists and exists[0]:
            return self.sha
        return await self.load(redis)

    async def invoke(self, redis: Any, keys: Sequence[str], args: Sequence[Any]) -> Any:
        """Run the script by hash, installing it first if Redis lacks it.

        At most one install and one retry happen. A second NOSCRIPT reply, or
        any other Redis error, propagates to the caller.
        """
        try:
            return await redis.evalsha(self.sha, len(keys), *keys, *args)
        except NoScriptError:
            logger.info(f"Lua script {self.name} is not loaded, installing it")

        await self.load(redis)
        return await redis.evalsha(self.sha, len(keys), *keys, *args)


APPLY = LuaScript("bucket_apply", APPLY_SCRIPT)
PEEK = LuaScript("bucket_peek", PEEK_SCRIPT)

ALL_SCRIPTS = (APPLY, PEEK)


async def ensure_scripts_loaded(redis: Any) -> dict[str, str]:
    """Install every engine script and return their SHA1s by name.

    Useful at deploy time to warm a fresh Redis, although scripts are
    installed lazily on first use anyway.
    """
    return {script.name: await script.ensure_loaded(redis) for script in ALL_SCRIPTS}
