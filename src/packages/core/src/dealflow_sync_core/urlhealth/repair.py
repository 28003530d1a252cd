"""Repair candidates for broken URLs.

Each heuristic proposes a corrected URL. Heuristics that propose the same URL
agree; a candidate must also pass a liveness probe. Confidence combines the
weights of every agreeing signal: ``1 - prod(1 - w)``.
"""
from typing import Callable
from urllib.parse import urlparse, urlunparse

from pydantic import BaseModel, Field

from dealflow_sync_core.urlhealth.validator import REDIRECTED, UrlCheck, check_url, normalize_url

HEURISTIC_WEIGHTS = {
    "https_upgrade": 0.7,
    "scheme_fix": 0.5,
    "www_toggle": 0.6,
    "trim_path": 0.4,
    "root_domain": 0.3,
    "domain_alias": 0.85,
}
LIVE_WEIGHT = 0.5
REDIRECT_WEIGHT = 0.3
MAX_PROBES = 4

DOMAIN_ALIASES = {
    "twitter.com": "x.com",
    "www.twitter.com": "x.com",
    "mobile.twitter.com": "x.com",
    "linkedin.com": "www.linkedin.com",
    "m.linkedin.com": "www.linkedin.com",
    "fb.com": "www.facebook.com",
}

Probe = Callable[[str], UrlCheck]


class RepairCandidate(BaseModel):
    url: str
    confidence: float
    heuristics: list[str] = Field(default_factory=list)


def combine(weights: list[float]) -> float:
    """Probability-style union of independent signals, clamped to [0, 1]."""
    miss = 1.0
    for w in weights:
        miss *= 1.0 - min(max(w, 0.0), 1.0)
    return round(1.0 - miss, 6)


def _with(parsed, **parts) -> str:
    return urlunparse(parsed._replace(**parts))


def propose_candidates(url: str) -> dict[str, list[str]]:
    """Map candidate URL -> names of heuristics that proposed it."""
    target = normalize_url(url)
    parsed = urlparse(target)
    host = (parsed.hostname or "").lower()
    if not host:
        return {}
    proposals: list[tuple[str, str]] = []

    if parsed.scheme == "http":
        proposals.append(("https_upgrade", _with(parsed, scheme="https")))
    elif parsed.scheme != "https":
        proposals.append(("scheme_fix", _with(parsed, scheme="https", netloc=host)))

    secure = parsed._replace(scheme="https") if parsed.scheme != "https" else parsed
    if host.startswith("www."):
        proposals.append(("www_toggle", _with(secure, netloc=host[4:])))
    else:
        proposals.append(("www_toggle", _with(secure, netloc=f"www.{host}")))

    path = parsed.path.rstrip("/")
    if path:
        parent = path.rsplit("/", 1)[0]
        if parent:
            proposals.append(("trim_path", _with(secure, path=parent, query="", fragment="")))
        proposals.append(("root_domain", _with(secure, path="/", query="", fragment="")))

    alias = DOMAIN_ALIASES.get(host)
    if alias:
        proposals.append(("domain_alias", _with(secure, netloc=alias)))

    candidates: dict[str, list[str]] = {}
    for name, candidate in proposals:
        if candidate.rstrip("/") == target.rstrip("/"):
            continue
        candidates.setdefault(candidate, []).append(name)
    return candidates


def propose_repair(url: str, probe: Probe | None = None, max_probes: int = MAX_PROBES) -> RepairCandidate | None:
    """Best live repair candidate for a broken URL, or None."""
    probe = probe or check_url
    candidates = propose_candidates(url)
    ranked = sorted(
        candidates.items(),
        key=lambda item: combine([HEURISTIC_WEIGHTS[h] for h in item[1]]),
        reverse=True,
    )
    best: RepairCandidate | None = None
    for candidate, heuristics in ranked[:max_probes]:
        check = probe(candidate)
        if not check.is_live:
            continue
        weights = [HEURISTIC_WEIGHTS[h] for h in heuristics] + [LIVE_WEIGHT]
        final = candidate
        if check.status == REDIRECTED and check.final_url:
            final = check.final_url
            weights.append(REDIRECT_WEIGHT)
            if final in candidates:
                weights.extend(HEURISTIC_WEIGHTS[h] for h in candidates[final] if h not in heuristics)
        found = RepairCandidate(url=final, confidence=combine(weights), heuristics=list(heuristics))
        if best is None or found.confidence > best.confidence:
            best = found
    return best
