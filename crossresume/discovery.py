"""Locate the provider and file that hold a session.

Discovery never guesses between providers: an id found under more than
one provider is reported as ambiguous and the caller has to pass an
explicit source.
"""
from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from .config import ResolvedConfig
from .errors import (
    AmbiguousSessionError,
    MalformedSessionError,
    SessionNotFoundError,
    SessionReadError,
)
from .models import MessageRole, SessionSummary
from .providers.base import SessionProvider
from .providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

SORT_KEYS = ("date", "messages", "provider")


@dataclass(frozen=True)
class SourceHint:
    """Caller-supplied narrowing: a provider alias, a file path, or both."""

    alias: str | None = None
    path: Path | None = None

    @classmethod
    def parse(cls, value: str | None) -> SourceHint | None:
        if not value:
            return None
        if os.sep in value or "/" in value or value.startswith((".", "~")):
            return cls(path=Path(value).expanduser())
        return cls(alias=value)


@dataclass(frozen=True)
class ResolvedSession:
    provider: SessionProvider
    path: Path
    home: Path


@dataclass
class _ScanResult:
    provider: SessionProvider
    matches: list[Path]
    scanned: int


class DiscoveryService:
    """Find sessions across the registered providers."""

    def __init__(
        self,
        registry: ProviderRegistry,
        config: ResolvedConfig,
        *,
        max_workers: int | None = None,
    ) -> None:
        self.registry = registry
        self.config = config
        self.max_workers = max_workers or max(1, len(registry))

    def resolve(self, session_id: str, hint: SourceHint | None = None) -> ResolvedSession:
        """Return the provider and file for ``session_id``.

        Raises SessionNotFoundError, AmbiguousSessionError or
        UnknownProviderError.
        """
        hint = hint or SourceHint()
        if hint.path is not None:
            return self._resolve_path(hint.path, hint.alias)

        if hint.alias is not None:
            providers = [self.registry.get(hint.alias)]
        else:
            providers = list(self.registry)

        results = self._scan_all(providers, session_id)
        matched = [r for r in results if r.matches]
        scanned = sum(r.scanned for r in results)
        checked = [r.provider.slug for r in results]

        if not matched:
            raise SessionNotFoundError(session_id, checked=checked, scanned_files=scanned)
        if len(matched) > 1:
            candidates = sorted(
                ((r.provider.slug, path) for r in matched for path in r.matches),
                key=lambda item: (item[0], str(item[1])),
            )
            raise AmbiguousSessionError(session_id, candidates)

        result = matched[0]
        paths = sorted(result.matches, key=str)
        if len(paths) > 1:
            logger.warning(
                "Session %s has %d files under %s; using %s",
                session_id, len(paths), result.provider.slug, paths[0],
            )
        logger.info("Resolved session %s to %s (%s)", session_id, result.provider.slug, paths[0])
        return ResolvedSession(
            provider=result.provider,
            path=paths[0],
            home=self.config.home_for(result.provider),
        )

    def _scan_all(self, providers: list[SessionProvider], session_id: str) -> list[_ScanResult]:
        # Results come back in registry order whatever order the scans finish in.
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(providers))) as pool:
            return list(pool.map(lambda p: self._scan(p, session_id), providers))

    def _scan(self, provider: SessionProvider, session_id: str) -> _ScanResult:
        home = self.config.home_for(provider)
        matches: list[Path] = []
        scanned = 0
        for path in provider.iter_session_files(home):
            scanned += 1
            if session_id in provider.candidate_ids(path, home):
                matches.append(path)
        logger.debug(
            "scan %s: %d file(s) under %s, %d match(es)",
            provider.slug, scanned, provider.session_root(home), len(matches),
        )
        return _ScanResult(provider=provider, matches=matches, scanned=scanned)

    def _resolve_path(self, path: Path, alias: str | None) -> ResolvedSession:
        if not path.is_file():
            raise SessionNotFoundError(str(path), checked=[], scanned_files=0)
        path = path.resolve()

        if alias is not None:
            provider = self.registry.get(alias)
            return ResolvedSession(provider, path, self.config.home_for(provider))

        owners = [p for p in self.registry if p.owns_path(path, self.config.home_for(p))]
        if len(owners) > 1:
            owners = [p for p in owners if p.sniff(path)] or owners
        if owners:
            provider = owners[0]
            logger.debug("Path %s is under the %s session root", path, provider.slug)
            return ResolvedSession(provider, path, self.config.home_for(provider))

        for provider in self.registry:
            if provider.sniff(path):
                logger.debug("Path %s matches the %s file signature", path, provider.slug)
                return ResolvedSession(provider, path, self.config.home_for(provider))

        provider = self._most_plausible_reader(path)
        return ResolvedSession(provider, path, self.config.home_for(provider))

    def _most_plausible_reader(self, path: Path) -> SessionProvider:
        best: tuple[tuple[bool, int], SessionProvider] | None = None
        for provider in self.registry:
            try:
                session = provider.read(path)
            except SessionReadError as exc:
                logger.debug("%s reader rejected %s: %s", provider.slug, path, exc)
                continue
            if not session.messages:
                continue
            roles = {m.role for m in session.messages}
            score = (
                MessageRole.USER in roles and MessageRole.ASSISTANT in roles,
                len(session.messages),
            )
            # Strictly greater keeps the earliest provider on ties.
            if best is None or score > best[0]:
                best = (score, provider)
        if best is None:
            raise MalformedSessionError(path, "no provider recognises this file")
        logger.info("Guessed provider %s for %s", best[1].slug, path)
        return best[1]

    def list_sessions(
        self,
        *,
        provider: str | None = None,
        workspace: Path | None = None,
        limit: int | None = None,
        sort: str = "date",
    ) -> list[SessionSummary]:
        """Summaries from every (or one) provider in a deterministic order."""
        if sort not in SORT_KEYS:
            raise ValueError(f"Unknown sort key '{sort}'. Choose from: {', '.join(SORT_KEYS)}")
        providers = [self.registry.get(provider)] if provider else list(self.registry)

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(providers))) as pool:
            batches = list(pool.map(lambda p: p.list_sessions(self.config.home_for(p)), providers))
        summaries = [s for batch in batches for s in batch]

        if workspace is not None:
            wanted = workspace.expanduser()
            summaries = [s for s in summaries if s.workspace is not None and _within(s.workspace, wanted)]

        if sort == "date":
            summaries.sort(key=lambda s: (-(s.ended_at or s.started_at or 0), s.provider, s.session_id))
        elif sort == "messages":
            summaries.sort(key=lambda s: (-s.message_count, s.provider, s.session_id))
        else:
            summaries.sort(key=lambda s: (s.provider, s.session_id))

        if limit is not None and limit > 0:
            return summaries[:limit]
        return summaries


def _within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True
