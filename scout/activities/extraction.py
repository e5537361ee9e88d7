"""Extraction engine: model output -> sanitized CandidateProduct list.

Model text is untrusted. It is parsed with an ordered list of strategies
(first non-empty result wins), then every raw object goes through
``sanitize_candidate`` regardless of which strategy produced it. Nothing in
this module raises for "no candidates"; callers get an empty list.
"""

from __future__ import annotations

import ipaddress
import json
import math
import re
import socket
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

import structlog

from scout.activities.search_providers import ImageHit
from scout.models.contracts import (
    CandidateProduct,
    SearchRequest,
    StructuredQuery,
    TokenUsage,
    UserProfile,
)
from scout.utils.llm import LLMClient
from scout.utils.prompt_versioning import load_versioned_prompt

log = structlog.get_logger("scout.extraction")

MAX_NAME_LENGTH = 500
MAX_RETAILER_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 2000
MAX_NOTES_LENGTH = 500

# Values below this are read as decimal currency and scaled to cents
PRICE_DOLLAR_THRESHOLD = 1000

KNOWN_SAFE_DOMAINS: frozenset[str] = frozenset(
    {
        "amazon.com", "ebay.com", "walmart.com", "target.com", "bestbuy.com",
        "costco.com", "nordstrom.com", "macys.com", "kohls.com", "homedepot.com",
        "lowes.com", "etsy.com", "wayfair.com", "zappos.com", "nike.com",
        "adidas.com", "gap.com", "oldnavy.com", "hm.com", "zara.com", "asos.com",
        "shein.com", "aliexpress.com", "newegg.com", "bhphotovideo.com",
        "overstock.com", "chewy.com", "sephora.com", "ulta.com",
    }
)

_IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp|avif|svg)$", re.IGNORECASE)
_IMAGE_CDN_RE = re.compile(
    r"\.(cloudfront\.net|cloudinary\.com|imgix\.net|akamaized\.net|shopify\.com)$",
    re.IGNORECASE,
)
_PRICE_STRIP_RE = re.compile(r"[^\d.\-]")
_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "127.0.0.0/8")
)

# Shorthand, integer, hex and octal IPv4 forms that resolvers accept (127.1, 0x7f000001)
_LOOSE_IPV4_RE = re.compile(r"(?:0x[0-9a-f]*|\d+)(?:\.(?:0x[0-9a-f]*|\d+)){0,3}")

_PRICE_KEYS = ("price_current", "price", "priceInCents")
_ORIGINAL_PRICE_KEYS = ("price_original", "originalPrice", "wasPrice")
_URL_KEYS = ("url", "link", "productUrl")
_RETAILER_KEYS = ("retailer", "store", "merchant")
_IMAGE_KEYS = ("image_url", "imageUrl", "image", "thumbnail")


# === Parsing ===


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = text.removeprefix("```")
    for lang in ("json", "JSON"):
        text = text.removeprefix(lang)
    text = text.lstrip("\n")
    return text.rsplit("```", 1)[0].strip()


def parse_json_array(text: str) -> list[dict[str, Any]] | None:
    """First bracketed array literal that decodes to a list of objects."""
    decoder = json.JSONDecoder()
    start = text.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            objects = [item for item in value if isinstance(item, dict)]
            if objects:
                return objects
        start = text.find("[", start + 1)
    return None


def parse_json_lines(text: str) -> list[dict[str, Any]] | None:
    """One JSON object per line; lines that fail to parse are skipped."""
    objects: list[dict[str, Any]] = []
    for line in text.splitlines():
        line = line.strip().rstrip(",")
        if not line.startswith("{"):
            continue
        try:
            value = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            objects.append(value)
    return objects or None


def parse_brace_objects(text: str) -> list[dict[str, Any]] | None:
    """Depth-tracking scan for top-level ``{...}`` spans embedded in prose.

    Braces inside JSON strings are ignored, so nested objects and values
    such as ``"size {L}"`` are delimited correctly.
    """
    objects: list[dict[str, Any]] = []
    depth = 0
    start = -1
    in_string = False
    escape_next = False

    for i, ch in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            if depth > 0:
                in_string = True
            continue
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                try:
                    value = json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    continue
                if isinstance(value, dict):
                    objects.append(value)

    return objects or None


PARSE_STRATEGIES: list[Callable[[str], list[dict[str, Any]] | None]] = [
    parse_json_array,
    parse_json_lines,
    parse_brace_objects,
]


def parse_json_objects(text: str) -> list[dict[str, Any]]:
    """Run the strategies in order; the first non-empty result wins."""
    if not text or not text.strip():
        return []
    cleaned = _strip_code_fence(text)
    for strategy in PARSE_STRATEGIES:
        objects = strategy(cleaned)
        if objects:
            log.debug("model_output_parsed", strategy=strategy.__name__, objects=len(objects))
            return objects
    log.warning("model_output_unparseable", preview=text[:200])
    return []


# === Field validation ===


def _parse_ip(hostname: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Canonical address for an IP-literal host, None for a domain name.

    Non-dotted-quad IPv4 forms are read the way inet_aton reads them, and
    IPv4-mapped IPv6 addresses are unwrapped to their IPv4 address.
    """
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        if not _LOOSE_IPV4_RE.fullmatch(hostname):
            return None
        try:
            address = ipaddress.IPv4Address(socket.inet_aton(hostname))
        except OSError:
            return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def _is_private_host(hostname: str) -> bool:
    if hostname == "localhost":
        return True
    address = _parse_ip(hostname)
    if address is None:
        return False
    if address.is_loopback:
        return True
    return any(address in network for network in _PRIVATE_NETWORKS)


def _checked_https(url: Any) -> tuple[str, Any] | None:
    """Shared HTTPS/credential/host checks. Returns (hostname, parts)."""
    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
        hostname = (parts.hostname or "").lower()
        _ = parts.port  # ValueError on a malformed port
    except ValueError:
        return None
    if parts.scheme != "https" or not hostname:
        return None
    if parts.username or parts.password:
        return None
    if _is_private_host(hostname):
        return None
    return hostname, parts


def validate_product_url(url: Any) -> str | None:
    """HTTPS-only, credential-free, public host. Returns the URL without its fragment."""
    checked = _checked_https(url)
    if checked is None:
        return None
    return url.strip().split("#", 1)[0]


def validate_image_url(url: Any) -> str | None:
    """Product URL checks plus an image-extension, CDN or known-retailer allow rule."""
    checked = _checked_https(url)
    if checked is None:
        return None
    hostname, parts = checked
    if _IMAGE_EXT_RE.search(parts.path.lower()):
        return url.strip()
    if _IMAGE_CDN_RE.search(hostname):
        return url.strip()
    if hostname.removeprefix("www.") in KNOWN_SAFE_DOMAINS:
        return url.strip()
    return None


def normalize_price(value: Any) -> int:
    """Numeric or currency string -> non-negative cents.

    Values below 1000 are read as decimal currency ("$49.99" -> 4999);
    anything else is taken as already in cents. The sign is discarded.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int | float):
        amount = float(value)
    elif isinstance(value, str):
        cleaned = _PRICE_STRIP_RE.sub("", value)
        try:
            amount = float(cleaned)
        except ValueError:
            return 0
    else:
        return 0

    if not math.isfinite(amount):
        return 0
    if amount < PRICE_DOLLAR_THRESHOLD:
        amount *= 100
    return abs(round(amount))


def derive_retailer(url: str) -> str:
    hostname = urlsplit(url).hostname or ""
    return hostname.lower().removeprefix("www.") or "unknown"


def _first_present(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, "", 0):
            return value
    return None


def _clamp_confidence(value: Any, price: int) -> int:
    default = 70 if price > 0 else 50
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(0, min(100, round(number)))


def _truncated(value: Any, limit: int) -> str | None:
    if value is None or value == "":
        return None
    return str(value)[:limit]


def sanitize_candidate(raw: Any) -> CandidateProduct | None:
    """Validate one raw model object. Returns None when it must be dropped."""
    if not isinstance(raw, dict):
        return None

    name = str(raw.get("name") or "").strip()[:MAX_NAME_LENGTH]
    if not name:
        return None

    url = validate_product_url(_first_present(raw, _URL_KEYS))
    if url is None:
        return None

    price = normalize_price(_first_present(raw, _PRICE_KEYS))
    original_raw = _first_present(raw, _ORIGINAL_PRICE_KEYS)
    price_original = normalize_price(original_raw) if original_raw is not None else None

    retailer = str(_first_present(raw, _RETAILER_KEYS) or derive_retailer(url)).strip()
    image_raw = _first_present(raw, _IMAGE_KEYS)

    return CandidateProduct(
        name=name,
        price_current=price,
        price_original=price_original or None,
        retailer=(retailer or "unknown")[:MAX_RETAILER_LENGTH],
        url=url,
        image_url=validate_image_url(image_raw) if image_raw else None,
        description=_truncated(raw.get("description"), MAX_DESCRIPTION_LENGTH),
        confidence=_clamp_confidence(raw.get("confidence"), price),
        notes=_truncated(raw.get("notes"), MAX_NOTES_LENGTH),
    )


def sanitize_candidates(raw_objects: list[dict[str, Any]]) -> list[CandidateProduct]:
    candidates = [c for c in (sanitize_candidate(obj) for obj in raw_objects) if c is not None]
    dropped = len(raw_objects) - len(candidates)
    if dropped:
        log.debug("candidates_dropped", dropped=dropped, kept=len(candidates))
    return candidates


# === Image association ===


def find_matching_image(name: str, images: list[ImageHit]) -> str | None:
    """First image whose title shares at least two long words with the name."""
    words = [w for w in name.lower().split() if len(w) > 3]
    if len(words) < 2:
        return None
    for image in images:
        title = image.title.lower()
        if sum(1 for w in words if w in title) >= 2:
            return image.thumbnail or image.url
    return None


def attach_images(
    candidates: list[CandidateProduct], images: list[ImageHit]
) -> list[CandidateProduct]:
    if not images:
        return candidates
    attached: list[CandidateProduct] = []
    for candidate in candidates:
        if candidate.image_url is None:
            image_url = validate_image_url(find_matching_image(candidate.name, images))
            if image_url:
                candidate = candidate.model_copy(update={"image_url": image_url})
        attached.append(candidate)
    return attached


# === Prompt context ===


def _dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


def build_profile_context(profile: UserProfile, structured: StructuredQuery | None = None) -> str:
    """Render the optional profile and filter fields as a prompt block."""
    lines = ["## User Profile"]

    if profile.sizes:
        sizes = ", ".join(f"{k}: {v}" for k, v in profile.sizes.items())
        lines.append(f"- Sizes: {sizes}")
    if profile.color_favorites:
        lines.append(f"- Favorite colors: {', '.join(profile.color_favorites)}")
    if profile.color_avoid:
        lines.append(f"- Colors to avoid: {', '.join(profile.color_avoid)}")
    if profile.budget_min is not None or profile.budget_max is not None:
        low = _dollars(profile.budget_min or 0)
        high = _dollars(profile.budget_max) if profile.budget_max is not None else "no limit"
        lines.append(f"- Budget: {low} - {high}")
    if profile.favorite_retailers:
        lines.append(f"- Preferred retailers: {', '.join(profile.favorite_retailers)}")
    if profile.excluded_retailers:
        lines.append(f"- Avoid retailers: {', '.join(profile.excluded_retailers)}")
    if profile.style_notes:
        lines.append(f"- Style notes: {profile.style_notes}")

    if structured is not None:
        if structured.category:
            lines.append(f"- Category: {structured.category}")
        if structured.price_min is not None or structured.price_max is not None:
            low = _dollars(structured.price_min or 0)
            high = _dollars(structured.price_max) if structured.price_max is not None else "no limit"
            lines.append(f"- Price range: {low} - {high}")
        if structured.brands:
            lines.append(f"- Brands: {', '.join(structured.brands)}")
        if structured.exclude_brands:
            lines.append(f"- Exclude brands: {', '.join(structured.exclude_brands)}")
        if structured.requirements:
            lines.append(f"- Requirements: {', '.join(structured.requirements)}")
        if structured.keywords:
            lines.append(f"- Keywords: {', '.join(structured.keywords)}")

    if len(lines) == 1:
        lines.append("- No preferences on file")
    return "\n".join(lines)


# === Model call ===


async def extract_candidates(
    llm: LLMClient,
    search_text: str,
    request: SearchRequest,
    *,
    max_tokens: int = 4000,
) -> tuple[list[CandidateProduct], TokenUsage]:
    """One extraction call over the concatenated search text."""
    system = load_versioned_prompt("product_extraction")
    user = (
        f"{build_profile_context(request.profile, request.structured)}\n\n"
        f"## Search Request\n{request.query}\n\n"
        f"## Search Results\n{search_text}\n\n"
        "Extract every matching product, one JSON object per line."
    )
    response = await llm.complete(system, user, max_tokens)
    usage = TokenUsage(
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        api_calls=1,
    )

    candidates = sanitize_candidates(parse_json_objects(response.text))
    log.info("extraction_complete", candidates=len(candidates))
    return candidates, usage
