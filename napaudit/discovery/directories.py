"""Registry of Australian directories, review sites, maps providers and social hosts."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

DEFAULT_WEIGHT = 3


@dataclass(frozen=True)
class DirectoryEntry:
    key: str
    name: str
    hosts: Tuple[str, ...]
    category: str  # directory | review | leads | maps | social
    weight: int = DEFAULT_WEIGHT

    def matches(self, host: str) -> bool:
        return any(host_matches(host, domain) for domain in self.hosts)


AU_DIRECTORIES: Tuple[DirectoryEntry, ...] = (
    DirectoryEntry("google_business_profile", "Google Business Profile", ("google.com", "google.com.au"), "maps", 10),
    DirectoryEntry("apple_maps", "Apple Maps", ("maps.apple.com", "apple.com"), "maps", 8),
    DirectoryEntry("bing_places", "Bing Places", ("bing.com", "bingplaces.com"), "maps", 7),
    DirectoryEntry("yellow_pages", "Yellow Pages Australia", ("yellowpages.com.au",), "directory", 6),
    DirectoryEntry("white_pages", "White Pages Australia", ("whitepages.com.au",), "directory", 5),
    DirectoryEntry("true_local", "True Local", ("truelocal.com.au",), "directory", 5),
    DirectoryEntry("localsearch", "Localsearch", ("localsearch.com.au",), "directory", 5),
    DirectoryEntry("yelp", "Yelp Australia", ("yelp.com.au", "yelp.com"), "review", 5),
    DirectoryEntry("womo", "Word of Mouth (WOMO)", ("womo.com.au",), "review", 5),
    DirectoryEntry("oneflare", "Oneflare", ("oneflare.com.au",), "leads", 4),
    DirectoryEntry("hotfrog", "Hotfrog", ("hotfrog.com.au",), "directory", 4),
    DirectoryEntry("purelocal", "PureLocal", ("purelocal.com.au",), "directory", 3),
    DirectoryEntry("startlocal", "StartLocal", ("startlocal.com.au",), "directory", 3),
    DirectoryEntry("aussieweb", "AussieWeb", ("aussieweb.com.au",), "directory", 3),
    DirectoryEntry("dlook", "dLook", ("dlook.com.au",), "directory", 3),
    DirectoryEntry("businesslistings", "BusinessListings.net.au", ("businesslistings.net.au",), "directory", 3),
    DirectoryEntry("brownbook", "Brownbook", ("brownbook.net",), "directory", 2),
    DirectoryEntry("infobel", "Infobel", ("infobel.com",), "directory", 2),
    DirectoryEntry("pinkpages", "Pink Pages", ("pinkpages.com.au",), "directory", 2),
    DirectoryEntry("abd", "Australian Business Directory", ("australianbusinessdirectory.com.au",), "directory", 2),
    # Smaller mapping/data providers, kept for discovery context
    DirectoryEntry("whereis", "Whereis", ("whereis.com",), "maps", 1),
    DirectoryEntry("mapquest", "MapQuest", ("mapquest.com",), "maps", 1),
    DirectoryEntry("tomtom", "TomTom", ("tomtom.com",), "maps", 1),
    DirectoryEntry("here", "HERE", ("here.com",), "maps", 1),
    # Presence tracking only; often not scrapable without JS or a login
    DirectoryEntry("facebook", "Facebook", ("facebook.com",), "social", 4),
    DirectoryEntry("instagram", "Instagram", ("instagram.com",), "social", 3),
    DirectoryEntry("linkedin", "LinkedIn", ("linkedin.com",), "social", 3),
    DirectoryEntry("x", "X (Twitter)", ("x.com", "twitter.com"), "social", 2),
    DirectoryEntry("youtube", "YouTube", ("youtube.com", "youtu.be"), "social", 2),
    DirectoryEntry("tiktok", "TikTok", ("tiktok.com",), "social", 2),
    DirectoryEntry("foursquare", "Foursquare", ("foursquare.com",), "social", 2),
    DirectoryEntry("nextdoor", "Nextdoor", ("nextdoor.com",), "social", 2),
)

OPPORTUNITY_CATEGORIES = ("directory", "review", "leads")


def _hosts_for(categories: Tuple[str, ...]) -> List[str]:
    hosts: List[str] = []
    for entry in AU_DIRECTORIES:
        if entry.category in categories:
            hosts.extend(host for host in entry.hosts if host not in hosts)
    return hosts


DIRECTORY_HOSTS = _hosts_for(OPPORTUNITY_CATEGORIES)
SOCIAL_HOSTS = _hosts_for(("social",))
MAPS_HOSTS = _hosts_for(("maps",))

_GOOGLE_MAPS = re.compile(r"google\.[^/]*/maps", re.IGNORECASE)


def host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith(f".{domain}")


def find_directory_by_host(host: Optional[str]) -> Optional[DirectoryEntry]:
    """First registry entry whose hosts contain ``host`` or one of its parent domains."""
    if not host:
        return None
    for entry in AU_DIRECTORIES:
        if entry.matches(host):
            return entry
    return None


def classify_host(host: str) -> str:
    """Map a host to a source type; maps providers win over social, social over directories."""
    if any(host_matches(host, domain) for domain in MAPS_HOSTS) or _GOOGLE_MAPS.search(host):
        return "places"
    if any(host_matches(host, domain) for domain in SOCIAL_HOSTS):
        return "social"
    if any(host_matches(host, domain) for domain in DIRECTORY_HOSTS):
        return "directory"
    return "web"
