from __future__ import annotations

from rapidfuzz import fuzz

from smartmark.services.records import derive_domain


def _safe(value: str | None) -> str:
    return (value or "").strip()


def score_bookmark(bookmark, query: str) -> tuple[float, list[str]]:
    q = query.strip().lower()
    title_l = _safe(bookmark.title).lower()
    url_l = _safe(bookmark.url).lower()
    domain_l = derive_domain(_safe(bookmark.url)).lower()

    score = 0.0
    reasons: list[str] = []

    if q == title_l:
        score += 150
        reasons.append("exact_title")
    elif title_l.startswith(q):
        score += 120
        reasons.append("title_prefix")
    elif q in title_l:
        score += 100
        reasons.append("title_contains")

    if q == domain_l:
        score += 90
        reasons.append("exact_domain")
    elif q in url_l:
        score += 60
        reasons.append("url_contains")

    fuzzy_title = fuzz.partial_ratio(q, title_l) if title_l else 0
    if fuzzy_title >= 72:
        score += fuzzy_title * 0.30
        reasons.append("title_fuzzy")

    if len(q) >= 4:
        fuzzy_domain = fuzz.partial_ratio(q, domain_l) if domain_l else 0
        if fuzzy_domain >= 85:
            score += fuzzy_domain * 0.20
            reasons.append("domain_fuzzy")

    return score, reasons


def search_bookmarks(bookmarks, query: str, limit: int = 50):
    if not query or not query.strip():
        return []

    ranked = []
    for bookmark in bookmarks:
        score, reasons = score_bookmark(bookmark, query)
        if reasons and score > 0:
            ranked.append(
                {"bookmark": bookmark, "score": round(score, 2), "reasons": reasons}
            )

    ranked.sort(key=lambda item: item["score"], reverse=True)
    return ranked[:limit]


def filter_bookmarks(bookmarks, query: str | None, limit: int = 500) -> list:
    """Bookmarks matching ``query`` by rank, or all of them for a blank query."""
    q = (query or "").strip()
    if not q:
        return list(bookmarks)
    return [row["bookmark"] for row in search_bookmarks(bookmarks, q, limit=limit)]
