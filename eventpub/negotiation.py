from typing import List, Mapping, Tuple

ACTIVITYPUB_CONTENT_TYPE = "application/activity+json"

FEDERATION_TYPES = ("application/activity+json", "application/ld+json")
HTML_TYPES = ("text/html", "application/xhtml+xml", "text/*", "*/*")


def parse_accept(value: str) -> List[Tuple[str, float]]:
    ranges = []
    for item in value.split(","):
        parts = [part.strip() for part in item.split(";")]
        media_type = parts[0].lower()
        if not media_type:
            continue
        quality = 1.0
        for param in parts[1:]:
            name, _, raw = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(raw.strip())
                except ValueError:
                    quality = 0.0
        ranges.append((media_type, quality))
    return ranges


def _best(ranges: List[Tuple[str, float]], types: Tuple[str, ...]) -> float:
    return max((q for media_type, q in ranges if media_type in types), default=0.0)


def wants_federated_representation(headers: Mapping[str, str]) -> bool:
    accept = headers.get("accept") or headers.get("Accept") or "*/*"
    ranges = parse_accept(accept)
    federation = _best(ranges, FEDERATION_TYPES)
    html = _best(ranges, HTML_TYPES)
    if html <= 0:
        return True
    return federation > 0 and federation >= html
