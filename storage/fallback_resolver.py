"""
Fallback Chain Resolver

Given a key (e.g. a coin symbol) and an ordered list of candidate sources
(e.g. logo URLs from several CDNs), find the first candidate that is
actually available, remember it, and stop retrying keys whose every
candidate has failed.

The resolver holds no network logic. It is constructed with an async
predicate ``attempt(candidate) -> bool`` and only manages the per-key state
machine around it:

    UNRESOLVED --resolve--> TRYING(0)
    TRYING(i)  --success--> RESOLVED            (resolved_source = candidates[i])
    TRYING(i)  --failure--> TRYING(i+1)         while i+1 < len(candidates)
    TRYING(i)  --failure--> FAILED              when i+1 == len(candidates)
    RESOLVED / FAILED --reset/clear_all--> UNRESOLVED

A failed attempt is anything other than a truthy result: False, an
exception raised by the predicate, or exceeding attempt_timeout. Individual
failures are logged and never raised; only exhaustion of the whole chain is
visible to callers, as a None result.

Usage:
    async def probe(url: str) -> bool:
        ...

    resolver = FallbackResolver(probe, attempt_timeout=5)
    url = await resolver.resolve("BTC", ["https://a/btc.png", "https://b/btc.png"])
    await resolver.preload(["ETH", "SOL"], get_logo_url_chain)
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from core.logging import get_logger, log_cache_event
from core.schemas import ResolverStats


AttemptFn = Callable[[Any], Awaitable[bool]]


class ResolutionState(str, Enum):
    """Lifecycle of one key's fallback chain."""

    UNRESOLVED = "unresolved"
    TRYING = "trying"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class FallbackChain:
    """
    Resolution state for one key.

    Attributes:
        key: Normalized resource identifier (e.g. "BTC")
        candidates: Ordered candidates, tried first to last
        state: Current ResolutionState
        current_index: Index being attempted while state is TRYING
        resolved_source: Candidate that succeeded, once RESOLVED
        attempts: Number of candidate attempts made for this key
    """

    key: str
    candidates: List[Any] = field(default_factory=list)
    state: ResolutionState = ResolutionState.UNRESOLVED
    current_index: Optional[int] = None
    resolved_source: Optional[Any] = None
    attempts: int = 0

    @property
    def permanently_failed(self) -> bool:
        return self.state is ResolutionState.FAILED


class FallbackResolver:
    """
    Ordered fallback resolution with success and failure memoization.

    Attributes:
        name: Label used in logs and stats
        attempt_timeout: Seconds after which a single attempt counts as
                         failed (None = wait indefinitely)

    Notes:
        - Attempts for one key are strictly sequential
        - Concurrent resolve() calls for the same key await the same
          in-flight chain instead of starting a second one
        - Different keys resolve concurrently with no ordering between them
        - State lives for the lifetime of the instance (no expiry)
    """

    def __init__(
        self,
        attempt: AttemptFn,
        attempt_timeout: Optional[float] = None,
        name: str = "resolver"
    ):
        if attempt_timeout is not None and attempt_timeout <= 0:
            raise ValueError(f"attempt_timeout must be positive, got {attempt_timeout}")

        self._attempt = attempt
        self.attempt_timeout = attempt_timeout
        self.name = name
        self._chains: Dict[str, FallbackChain] = {}
        self._inflight: Dict[str, "asyncio.Future[Optional[Any]]"] = {}
        self.logger = get_logger(__name__)

    # ============================================
    # Resolution
    # ============================================

    async def resolve(self, key: str, candidates: Sequence[Any]) -> Optional[Any]:
        """
        Return the first candidate for key whose attempt succeeds.

        Args:
            key: Resource identifier
            candidates: Ordered candidates to try. Ignored when the key is
                        already RESOLVED or FAILED.

        Returns:
            The successful candidate, or None if every candidate failed now
            or in an earlier call (until reset), or if candidates is empty.
        """
        chain = self._chains.get(key)
        if chain is not None:
            if chain.state is ResolutionState.RESOLVED:
                log_cache_event(self.name, "hit", key)
                return chain.resolved_source
            if chain.state is ResolutionState.FAILED:
                log_cache_event(self.name, "failed-hit", key)
                return None

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        candidates = list(candidates)
        if not candidates:
            self.logger.debug(f"[{self.name}] No candidates for '{key}'")
            return None

        chain = FallbackChain(key=key, candidates=candidates)
        self._chains[key] = chain

        task = asyncio.ensure_future(self._run_chain(chain))
        self._inflight[key] = task
        task.add_done_callback(lambda done, k=key: self._forget_inflight(k, done))

        # Shielded so a caller that stops waiting doesn't abort the chain
        # for everyone else awaiting the same key.
        return await asyncio.shield(task)

    async def preload(
        self,
        keys: Iterable[str],
        candidate_fn: Callable[[str], Sequence[Any]]
    ) -> None:
        """
        Resolve a batch of keys concurrently.

        Settles once every key has settled. A key whose chain fails, or whose
        candidate_fn raises, doesn't block or cancel any other key.

        Args:
            keys: Keys to resolve (duplicates are resolved once)
            candidate_fn: Builds the candidate list for a key
        """
        unique_keys = list(dict.fromkeys(keys))
        if not unique_keys:
            return

        self.logger.info(f"[{self.name}] Preloading {len(unique_keys)} key(s)")
        results = await asyncio.gather(
            *(self._preload_one(key, candidate_fn) for key in unique_keys),
            return_exceptions=True
        )

        resolved = 0
        for key, result in zip(unique_keys, results):
            if isinstance(result, BaseException):
                self.logger.warning(f"[{self.name}] Preload of '{key}' raised: {result!r}")
            elif result is not None:
                resolved += 1

        self.logger.info(f"[{self.name}] Preload finished: {resolved}/{len(unique_keys)} resolved")

    # ============================================
    # Reset
    # ============================================

    def reset(self, key: str) -> None:
        """
        Forget resolution or failure state for one key.

        The next resolve() starts again from candidate 0. A chain still in
        flight for this key keeps running but its outcome is discarded.
        """
        self._chains.pop(key, None)
        self._inflight.pop(key, None)
        self.logger.debug(f"[{self.name}] Reset '{key}'")

    def clear_all(self) -> None:
        """Reset every key."""
        count = len(self._chains)
        self._chains.clear()
        self._inflight.clear()
        log_cache_event(self.name, "clear", details=f"{count} chains reset")

    # ============================================
    # Introspection
    # ============================================

    def state(self, key: str) -> ResolutionState:
        chain = self._chains.get(key)
        return chain.state if chain else ResolutionState.UNRESOLVED

    def resolved_source(self, key: str) -> Optional[Any]:
        chain = self._chains.get(key)
        if chain and chain.state is ResolutionState.RESOLVED:
            return chain.resolved_source
        return None

    def is_failed(self, key: str) -> bool:
        chain = self._chains.get(key)
        return bool(chain and chain.permanently_failed)

    def get_chain(self, key: str) -> Optional[FallbackChain]:
        return self._chains.get(key)

    def stats(self) -> ResolverStats:
        states = [chain.state for chain in self._chains.values()]
        return ResolverStats(
            name=self.name,
            tracked=len(states),
            resolved=states.count(ResolutionState.RESOLVED),
            failed=states.count(ResolutionState.FAILED),
            in_flight=len(self._inflight)
        )

    # ============================================
    # Internals
    # ============================================

    async def _run_chain(self, chain: FallbackChain) -> Optional[Any]:
        try:
            for index, candidate in enumerate(chain.candidates):
                chain.state = ResolutionState.TRYING
                chain.current_index = index
                chain.attempts += 1

                if await self._try_candidate(chain.key, index, candidate):
                    chain.state = ResolutionState.RESOLVED
                    chain.resolved_source = candidate
                    chain.current_index = None
                    self.logger.debug(
                        f"[{self.name}] Resolved '{chain.key}' with candidate {index + 1}/{len(chain.candidates)}"
                    )
                    return candidate

            chain.state = ResolutionState.FAILED
            chain.current_index = None
            log_cache_event(
                self.name, "exhausted", chain.key,
                f"all {len(chain.candidates)} candidate(s) failed"
            )
            return None
        except asyncio.CancelledError:
            # Leave the key retryable rather than stuck in TRYING
            chain.state = ResolutionState.UNRESOLVED
            chain.current_index = None
            raise

    async def _try_candidate(self, key: str, index: int, candidate: Any) -> bool:
        try:
            if self.attempt_timeout is not None:
                ok = await asyncio.wait_for(self._attempt(candidate), timeout=self.attempt_timeout)
            else:
                ok = await self._attempt(candidate)
        except asyncio.TimeoutError:
            self.logger.debug(
                f"[{self.name}] Candidate {index + 1} for '{key}' timed out after {self.attempt_timeout}s"
            )
            return False
        except Exception as e:
            self.logger.debug(f"[{self.name}] Candidate {index + 1} for '{key}' raised: {e!r}")
            return False

        if not ok:
            self.logger.debug(f"[{self.name}] Candidate {index + 1} for '{key}' failed: {candidate!r}")
        return bool(ok)

    async def _preload_one(self, key: str, candidate_fn: Callable[[str], Sequence[Any]]) -> Optional[Any]:
        return await self.resolve(key, candidate_fn(key))

    def _forget_inflight(self, key: str, task: "asyncio.Future[Optional[Any]]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"[{self.name}] Resolution of '{key}' crashed: {task.exception()!r}")
