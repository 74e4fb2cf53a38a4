"""
Domain Normalization

One pure function used at ingestion, at read time and by the repair jobs,
so "https://www.Example.com/" and "example.com" always land on the same key.
"""

import re
from typing import Optional

_PROTOCOL_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def normalize_domain(value: Optional[str]) -> str:
    """
    Normalize a domain or URL to a bare host name.

    Steps:
    1. Trim and lowercase
    2. Strip protocol (http://, https://, ...)
    3. Drop credentials, path, query, fragment and port
    4. Remove leading "www." and trailing dot

    Returns:
        Normalized host, or "" when nothing usable remains
    """
    if not value:
        return ""

    domain = str(value).strip().lower()
    domain = _PROTOCOL_RE.sub("", domain)

    # Cut at the first path/query/fragment separator
    for separator in ("/", "?", "#"):
        domain = domain.split(separator, 1)[0]

    if "@" in domain:
        domain = domain.rsplit("@", 1)[1]
    domain = domain.split(":", 1)[0]

    if domain.startswith("www."):
        domain = domain[4:]

    return domain.strip().rstrip(".")


def domain_matches(candidate: Optional[str], target: Optional[str]) -> bool:
    """
    Check whether a result URL/host belongs to the target domain.

    Subdomains match (blog.example.com -> example.com); substrings do not
    (notexample.com is not example.com).
    """
    host = normalize_domain(candidate)
    wanted = normalize_domain(target)
    if not host or not wanted:
        return False
    return host == wanted or host.endswith("." + wanted)
