"""Fan-out query builder: one free-form request -> bounded list of search strings.

Rules are applied in order and each can be switched off:
1. Major retailers (site-scoped, with the budget clause)
2. User-favorite retailers not already covered
3. Deal aggregators
4. Generic intent queries
5. Category keyword heuristics (electronics / apparel / home)

Output is ordered, case-insensitively de-duplicated, and capped so a single
round never costs more than ``max_queries`` provider requests.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from scout.models.contracts import SearchProviderName, StructuredQuery, UserProfile

MAX_SEARCH_QUERIES = 25

MAJOR_RETAILERS: tuple[str, ...] = (
    "amazon.com",
    "walmart.com",
    "target.com",
    "bestbuy.com",
    "ebay.com",
)

DEAL_AGGREGATORS: tuple[str, ...] = ("slickdeals.net", "dealnews.com")

# Broader allow list handed to providers that filter by domain instead of site: operators
TAVILY_RETAILER_DOMAINS: tuple[str, ...] = (
    "amazon.com",
    "walmart.com",
    "target.com",
    "bestbuy.com",
    "ebay.com",
    "costco.com",
    "kohls.com",
    "macys.com",
    "nordstrom.com",
)

_CATEGORY_RETAILERS: dict[str, tuple[str, ...]] = {
    "electronics": ("newegg.com", "bhphotovideo.com"),
    "apparel": ("nordstrom.com", "zappos.com", "asos.com"),
    "home": ("wayfair.com", "homedepot.com"),
}

_CATEGORY_KEYWORDS: dict[str, frozenset[str]] = {
    "electronics": frozenset(
        {
            "laptop", "laptops", "headphones", "earbuds", "earphones", "phone", "phones",
            "tablet", "monitor", "camera", "tv", "television", "speaker", "speakers",
            "keyboard", "mouse", "charger", "wireless", "bluetooth", "smartwatch", "console",
        }
    ),
    "apparel": frozenset(
        {
            "shirt", "shirts", "dress", "dresses", "jeans", "pants", "jacket", "coat",
            "shoes", "shoe", "sneakers", "boots", "sweater", "hoodie", "skirt", "shorts",
            "socks", "leggings", "blazer", "sandals",
        }
    ),
    "home": frozenset(
        {
            "sofa", "couch", "chair", "table", "desk", "lamp", "rug", "bed", "mattress",
            "pillow", "curtains", "shelf", "bookshelf", "dresser", "cookware", "kitchen",
            "blender", "vacuum", "bedding", "furniture",
        }
    ),
}

_WORD_RE = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class FanoutRules:
    major_retailers: bool = True
    favorite_retailers: bool = True
    deal_aggregators: bool = True
    generic_intent: bool = True
    category_heuristics: bool = True


# Tavily applies retailer domains as an include_domains filter, so the
# site-scoped rules would only duplicate its work.
PROVIDER_RULES: dict[str, FanoutRules] = {
    "brave": FanoutRules(),
    "tavily": FanoutRules(major_retailers=False, favorite_retailers=False, deal_aggregators=False),
}


def _normalize_domain(domain: str) -> str:
    d = domain.strip().lower()
    for prefix in ("https://", "http://", "www."):
        d = d.removeprefix(prefix)
    return d.rstrip("/")


def budget_ceiling(profile: UserProfile, structured: StructuredQuery | None = None) -> int | None:
    """Lowest price ceiling (minor units) from the profile and structured filters."""
    ceilings = [profile.budget_max]
    if structured is not None:
        ceilings.append(structured.price_max)
    known = [c for c in ceilings if c]
    return min(known) if known else None


def format_budget_clause(ceiling_cents: int | None) -> str:
    """' under $50' for 5000, ' under $49.99' for 4999, '' when unset."""
    if not ceiling_cents:
        return ""
    dollars, cents = divmod(ceiling_cents, 100)
    if cents == 0:
        return f" under ${dollars}"
    return f" under ${dollars}.{cents:02d}"


def detect_categories(query: str) -> list[str]:
    """Cheap keyword match. Misses are fine; false hits only add queries."""
    words = set(_WORD_RE.findall(query.lower()))
    return [name for name, keywords in _CATEGORY_KEYWORDS.items() if words & keywords]


def retailer_domains(profile: UserProfile, query: str = "") -> list[str]:
    """Domain allow list for providers that support include_domains.

    Category retailers matched by ``query`` are included so the category
    queries can return hits under the filter.
    """
    excluded = {_normalize_domain(d) for d in profile.excluded_retailers}
    category_domains = [d for c in detect_categories(query) for d in _CATEGORY_RETAILERS[c]]
    domains: list[str] = []
    for domain in (*TAVILY_RETAILER_DOMAINS, *profile.favorite_retailers, *category_domains):
        normalized = _normalize_domain(domain)
        if normalized and normalized not in excluded and normalized not in domains:
            domains.append(normalized)
    return domains


def build_search_queries(
    query: str,
    profile: UserProfile,
    structured: StructuredQuery | None = None,
    *,
    provider: SearchProviderName = "brave",
    rules: FanoutRules | None = None,
    max_queries: int = MAX_SEARCH_QUERIES,
) -> list[str]:
    """Build the fan-out query list for one round."""
    rules = rules or PROVIDER_RULES.get(provider, FanoutRules())
    q = " ".join(query.split())
    budget = format_budget_clause(budget_ceiling(profile, structured))
    excluded = {_normalize_domain(d) for d in profile.excluded_retailers}

    queries: list[str] = []
    covered: set[str] = set()

    if rules.major_retailers:
        for domain in MAJOR_RETAILERS:
            if domain in excluded:
                continue
            queries.append(f"{q} site:{domain}{budget}")
            covered.add(domain)

    if rules.favorite_retailers:
        for raw in profile.favorite_retailers:
            domain = _normalize_domain(raw)
            if not domain or domain in excluded or domain in covered:
                continue
            queries.append(f"{q} site:{domain}{budget}")
            covered.add(domain)

    if rules.deal_aggregators:
        for domain in DEAL_AGGREGATORS:
            if domain not in excluded:
                queries.append(f"{q} site:{domain}")

    # Generic intent queries are the floor: they survive the cap and are
    # emitted even with the rule switched off if nothing else was produced.
    generic: list[str] = []
    if rules.generic_intent or not queries:
        generic = [
            f"buy {q}{budget} price",
            f"{q} deals discounts{budget}",
            f"best {q} reviews",
        ]

    extra: list[str] = []
    if rules.category_heuristics:
        for category in detect_categories(q):
            for domain in _CATEGORY_RETAILERS[category]:
                if domain not in excluded and domain not in covered:
                    extra.append(f"{q} site:{domain}{budget}")
                    covered.add(domain)

    generic = _dedupe(generic)[:max_queries]
    room = max_queries - len(generic)
    generic_keys = {g.lower() for g in generic}
    site_scoped = [s for s in _dedupe(queries + extra) if s.lower() not in generic_keys]
    kept = set(site_scoped[:room])
    return _dedupe([s for s in queries if s in kept] + generic + [s for s in extra if s in kept])


def _dedupe(queries: list[str]) -> list[str]:
    seen: set[str] = set()
    deduped: list[str] = []
    for candidate in queries:
        key = candidate.lower()
        if key not in seen:
            seen.add(key)
            deduped.append(candidate)
    return deduped
