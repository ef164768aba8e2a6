"""Wallet login challenges.

A nonce is issued per lower-cased address and kept in Redis under
``nonce:<address>`` with a TTL. The wallet signs ``Login nonce: <nonce>``;
a matching signature consumes the nonce, a mismatching one leaves it in
place so the real owner can still log in.
"""
import logging
import secrets

from redis.exceptions import WatchError

from .errors import InvalidInput, NonceNotFound, SignatureMismatch, VerificationFailed
from .security import challenge_message, recover_signer

logger = logging.getLogger(__name__)


def normalize_address(address) -> str:
    if not isinstance(address, str) or not address.strip():
        raise InvalidInput("address required")
    return address.strip().lower()


class ChallengeManager:
    def __init__(self, redis, ttl_seconds: int = 300):
        self._redis = redis
        self._ttl = ttl_seconds

    @staticmethod
    def _key(address: str) -> str:
        return f"nonce:{address}"

    async def issue_nonce(self, address) -> str:
        addr = normalize_address(address)
        nonce = secrets.token_hex(16)
        # last issue wins; any in-flight login for this address is cancelled
        await self._redis.setex(self._key(addr), self._ttl, nonce)
        return nonce

    async def verify(self, address, signature) -> str:
        """Check ``signature`` against the live nonce and consume it.

        Returns the recovered (checksummed) address.
        """
        if not address or not signature:
            raise InvalidInput("address and signature required")
        addr = normalize_address(address)
        key = self._key(addr)

        nonce = await self._redis.get(key)
        if nonce is None:
            raise NonceNotFound()

        try:
            recovered = recover_signer(challenge_message(nonce), signature)
        except Exception:
            logger.exception("signature recovery failed for %s", addr)
            raise VerificationFailed()

        if recovered.lower() != addr:
            logger.info("signature mismatch for %s (recovered %s)", addr, recovered)
            raise SignatureMismatch()

        await self._consume(key, nonce)
        logger.info("login verified for %s", addr)
        return recovered

    async def _consume(self, key: str, nonce: str) -> None:
        # compare-and-delete: only the nonce we verified against may be removed
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != nonce:
                    raise NonceNotFound()
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
            except WatchError:
                raise NonceNotFound()
