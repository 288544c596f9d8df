"""
Randomness Coordinator - issues request ids and delivers random words

Stands in for an external VRF coordinator. Requests are numbered from 1 and
each one is resolved with a single set of words, delivered to the consumer
that made it until the consumer accepts them.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence, Union

from web3 import Web3

from raffle.errors import UnknownRequest
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RandomnessRequest:
    request_id: int
    consumer: Any
    num_words: int
    words: Optional[List[int]] = None


def derive_random_words(request_id: int, num_words: int = 1) -> List[int]:
    """Deterministic words: keccak256(abi.encode(request_id, i)) for i in range(num_words)."""
    return [
        int.from_bytes(Web3.solidity_keccak(["uint256", "uint256"], [request_id, i]), "big")
        for i in range(num_words)
    ]


class RandomnessCoordinator:
    """In-process randomness oracle.

    The consumer passed to `request_random_words` must expose
    `fulfill_random_words(request_id, random_words, now)`.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._next_request_id = 1
        self._requests: Dict[int, RandomnessRequest] = {}
        self.last_request_id = 0

    def request_random_words(self, consumer: Any, num_words: int = 1) -> int:
        if num_words < 1:
            raise ValueError("num_words must be at least 1")
        with self._lock:
            request_id = self._next_request_id
            self._next_request_id += 1
            self._requests[request_id] = RandomnessRequest(request_id, consumer, num_words)
            self.last_request_id = request_id
        logger.info(f"Randomness requested: request_id={request_id}, num_words={num_words}")
        return request_id

    def pending_requests(self) -> List[int]:
        with self._lock:
            return sorted(self._requests)

    def forget(self, request_id: int) -> bool:
        """Drop a request its consumer has resolved. Returns False if unknown."""
        with self._lock:
            return self._requests.pop(request_id, None) is not None

    def fulfill_random_words(
        self,
        request_id: int,
        random_words: Optional[Union[int, Sequence[int]]] = None,
        now: Optional[int] = None,
    ) -> List[int]:
        """Deliver words for `request_id` to its consumer.

        The words are fixed on the first delivery attempt. If the consumer
        fails (for example on payout) the request stays pending and every
        retry redelivers the same words, whatever the caller passes.
        """
        with self._lock:
            request = self._requests.get(request_id)
        if request is None:
            raise UnknownRequest(request_id)

        with self._lock:
            if request.words is None:
                if random_words is None:
                    words = derive_random_words(request_id, request.num_words)
                else:
                    words = _as_words(random_words)
                if not words:
                    raise ValueError("random_words must not be empty")
                if any(word < 0 for word in words):
                    raise ValueError("random words must be non-negative")
                request.words = words
            elif random_words is not None and _as_words(random_words) != request.words:
                logger.warning(f"Request {request_id} already has words; redelivering the original ones")
            words = list(request.words)

        try:
            request.consumer.fulfill_random_words(request_id, words, now)
        except UnknownRequest:
            # The consumer is no longer waiting on this id.
            self.forget(request_id)
            raise

        self.forget(request_id)
        logger.info(f"Randomness fulfilled: request_id={request_id}")
        return words


def _as_words(random_words: Union[int, Sequence[int]]) -> List[int]:
    if isinstance(random_words, int):
        return [random_words]
    return list(random_words)
