"""
Server resolution - name/id lookup and fuzzy search over the vault.
"""

from __future__ import annotations
import fnmatch
import logging
from typing import Optional

from .models import Server
from .store import Vault

logger = logging.getLogger(__name__)


class NoServerError(LookupError):
    """No server matches the given name or id."""
    pass


class AmbiguousServerError(LookupError):
    """More than one server matches the given name or id prefix."""

    def __init__(self, query: str, matches: list[Server]):
        self.query = query
        self.matches = matches
        options = ", ".join(f"{s.name} ({s.short_id})" for s in matches)
        super().__init__(f"'{query}' matches several servers: {options}")


def fuzzy_score(haystack: str, query: str) -> Optional[int]:
    """
    Score query as a case-insensitive subsequence of haystack.

    Consecutive matches and matches at word starts score higher.
    Returns None when query is not a subsequence.
    """
    hay = haystack.lower()
    needle = query.lower()
    if not needle:
        return 0

    score = 0
    pos = 0
    prev = -2
    for ch in needle:
        if ch.isspace():
            continue
        idx = hay.find(ch, pos)
        if idx < 0:
            return None
        score += 1
        if idx == prev + 1:
            score += 5
        if idx == 0 or not hay[idx - 1].isalnum():
            score += 3
        prev = idx
        pos = idx + 1

    # Shorter haystacks win ties
    return score * 100 - len(hay)


def _search_text(server: Server) -> str:
    parts = [server.name, server.host, server.username, str(server.port)]
    if server.description:
        parts.append(server.description)
    parts.extend(server.tags)
    return " ".join(parts)


class ServerResolver:
    """
    Finds servers in an unlocked vault by name, id, or search query.
    """

    def __init__(self, vault: Vault):
        self.vault = vault

    def resolve(self, name_or_id: str) -> Server:
        """
        Resolve a server from user input.

        Order: exact id, case-insensitive name, id prefix.

        Raises:
            NoServerError: Nothing matches
            AmbiguousServerError: Several servers share the name or prefix
        """
        servers = self.vault.list_servers()
        query = name_or_id.strip()

        for server in servers:
            if server.id == query:
                return server

        by_name = [s for s in servers if s.name.lower() == query.lower()]
        if len(by_name) == 1:
            return by_name[0]
        if len(by_name) > 1:
            raise AmbiguousServerError(query, by_name)

        if query:
            by_prefix = [s for s in servers if s.id.startswith(query.lower())]
            if len(by_prefix) == 1:
                return by_prefix[0]
            if len(by_prefix) > 1:
                raise AmbiguousServerError(query, by_prefix)

        raise NoServerError(f"Server '{name_or_id}' not found")

    def search(self, query: str) -> list[Server]:
        """
        Search servers, best match first.

        Queries containing * or ? are treated as glob patterns against
        name and host; anything else is a fuzzy match over name, host,
        user, port, description and tags.
        """
        servers = self.vault.list_servers()
        query = query.strip()
        if not query:
            return servers

        if any(c in query for c in "*?["):
            pattern = query.lower()
            return [
                s for s in servers
                if fnmatch.fnmatch(s.name.lower(), pattern)
                or fnmatch.fnmatch(s.host.lower(), pattern)
            ]

        scored = []
        for index, server in enumerate(servers):
            score = fuzzy_score(_search_text(server), query)
            if score is not None:
                scored.append((score, index, server))

        # Best score first, insertion order on ties
        scored.sort(key=lambda x: (-x[0], x[1]))
        logger.debug(f"Search '{query}' matched {len(scored)} of {len(servers)} servers")
        return [s for _, _, s in scored]

