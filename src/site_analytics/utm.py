"""
UTM parameter parsing for campaign attribution.

Attribution is captured once, from the landing URL sent with session init,
and stored on the session record:

- utm_source: Where the traffic came from (e.g., "google", "newsletter")
- utm_medium: Marketing medium (e.g., "cpc", "email", "social")
- utm_campaign: Campaign name (e.g., "spring_sale")
- utm_term: Paid search keywords (optional)
- utm_content: Differentiates similar content/links (optional)

`ref` and `source` are accepted as aliases of utm_source.
"""

from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

# Maximum length for UTM parameter values (security/sanity limit)
MAX_UTM_LENGTH = 200


@dataclass(frozen=True)
class UTMParams:
    """Extracted UTM parameters. All fields are optional."""
    source: str | None = None
    medium: str | None = None
    campaign: str | None = None
    term: str | None = None
    content: str | None = None

    @property
    def has_utm(self) -> bool:
        """Check if any UTM parameters are present."""
        return any([self.source, self.medium, self.campaign, self.term, self.content])


def _clean_param(value: str | None) -> str | None:
    """Strip, truncate to MAX_UTM_LENGTH, and map empty strings to None."""
    if not value:
        return None

    cleaned = value.strip()[:MAX_UTM_LENGTH]
    return cleaned if cleaned else None


def _get_first_param(params: dict, *keys: str) -> str | None:
    """Get the first non-empty value from multiple possible parameter names."""
    for key in keys:
        values = params.get(key, [])
        if values and values[0]:
            return _clean_param(values[0])
    return None


def parse_utm(url: str | None) -> UTMParams:
    """
    Extract UTM parameters from a URL.

    Examples:
        >>> parse_utm("https://example.com/?utm_source=google&utm_medium=cpc").source
        'google'

        >>> parse_utm("https://example.com/page").has_utm
        False
    """
    if not url:
        return UTMParams()

    try:
        parsed = urlparse(url)
    except ValueError:
        return UTMParams()

    query_params = parse_qs(parsed.query, keep_blank_values=False)

    # Some SPAs put params in the fragment; query params take precedence
    if parsed.fragment:
        for key, value in parse_qs(parsed.fragment, keep_blank_values=False).items():
            query_params.setdefault(key, value)

    return UTMParams(
        source=_get_first_param(query_params, "utm_source", "ref", "source"),
        medium=_get_first_param(query_params, "utm_medium", "medium"),
        campaign=_get_first_param(query_params, "utm_campaign", "campaign"),
        term=_get_first_param(query_params, "utm_term", "term"),
        content=_get_first_param(query_params, "utm_content", "content"),
    )
