"""
Elasticsearch forwarding.

Two query strategies are tried in order, each at most once: a tolerant
wildcard ``query_string`` and, if the engine refuses that shape, a
``phrase_prefix`` ``multi_match`` over every field.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests
from django.conf import settings

from core.errors import EngineMisconfigured, EngineQueryRejected, EngineUnreachable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = (5, 20)  # (connect, read) seconds
ALL_INDICES = "_all"


@dataclass(frozen=True)
class SearchHit:
    id: str
    index: str
    score: Optional[float]
    data: Dict[str, Any]

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "index": self.index, "score": self.score, "data": self.data}


@dataclass
class SearchResult:
    hits: List[SearchHit]
    total: int
    strategy: str = ""
    attempts: List[str] = field(default_factory=list)


def query_string_body(query: str, size: int) -> Dict[str, Any]:
    return {
        "query": {
            "query_string": {
                "query": f"*{query}*",
                "default_operator": "OR",
                "analyze_wildcard": True,
            }
        },
        "size": size,
    }


def phrase_prefix_body(query: str, size: int) -> Dict[str, Any]:
    return {
        "query": {
            "multi_match": {
                "query": query,
                "fields": ["*"],
                "type": "phrase_prefix",
            }
        },
        "size": size,
    }


QueryStrategy = Tuple[str, Callable[[str, int], Dict[str, Any]]]

QUERY_STRATEGIES: Tuple[QueryStrategy, ...] = (
    ("query_string", query_string_body),
    ("phrase_prefix", phrase_prefix_body),
)


def normalize_hit(raw: Dict[str, Any]) -> SearchHit:
    return SearchHit(
        id=str(raw.get("_id", "")),
        index=str(raw.get("_index", "")),
        score=raw.get("_score"),
        data=raw.get("_source") or {},
    )


def _total(hits_block: Dict[str, Any], fallback: int) -> int:
    total = hits_block.get("total")
    if isinstance(total, dict):
        total = total.get("value")
    # ES 6 reports a bare int; some proxies drop it entirely
    return total if isinstance(total, int) and total >= 0 else fallback


class SearchForwarder:
    def __init__(
        self,
        base_url: str | None,
        api_key: str | None = None,
        session: requests.Session | None = None,
        timeout=DEFAULT_TIMEOUT,
        page_size: int = 100,
        strategies: Sequence[QueryStrategy] = QUERY_STRATEGIES,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_size = page_size
        self.strategies = tuple(strategies)

    @classmethod
    def from_settings(cls, session: requests.Session | None = None) -> "SearchForwarder":
        return cls(
            settings.ELASTICSEARCH_URL,
            api_key=settings.ELASTICSEARCH_API_KEY or None,
            session=session,
            page_size=settings.ELASTICSEARCH_PAGE_SIZE,
        )

    def _headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            h["Authorization"] = f"ApiKey {self.api_key}"
        return h

    def search_url(self, index: str | None = None) -> str:
        if not self.base_url:
            raise EngineMisconfigured()
        index = (index or "").strip() or ALL_INDICES
        return f"{self.base_url}/{quote(index, safe=',*')}/_search"

    def forward(self, query: str, index: str | None = None) -> SearchResult:
        """Run ``query`` against ``index`` (all indices when empty); normalized hits or a broker error."""
        url = self.search_url(index)
        last_error: Exception | None = None
        attempts: List[str] = []

        for name, build in self.strategies:
            attempts.append(name)
            try:
                resp = self.session.post(
                    url, json=build(query, self.page_size), headers=self._headers(), timeout=self.timeout
                )
            except requests.RequestException as exc:
                logger.warning("engine: %s transport error url=%s err=%s", name, url, exc)
                last_error = EngineUnreachable()
                continue

            logger.info("engine: %s status=%s url=%s", name, resp.status_code, url)
            if not resp.ok:
                logger.warning("engine: %s rejected status=%s body=%s", name, resp.status_code, resp.text[:500])
                last_error = EngineQueryRejected()
                continue

            try:
                payload = resp.json()
            except ValueError:
                logger.warning("engine: %s returned non-JSON body", name)
                last_error = EngineQueryRejected()
                continue

            hits_block = (payload or {}).get("hits") or {}
            hits = [normalize_hit(h) for h in hits_block.get("hits") or []]
            return SearchResult(hits=hits, total=_total(hits_block, len(hits)), strategy=name, attempts=attempts)

        logger.error("engine: all strategies failed query_len=%d attempts=%s", len(query), attempts)
        raise last_error or EngineQueryRejected()
