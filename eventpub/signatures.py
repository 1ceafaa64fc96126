import base64
import hashlib
from dataclasses import dataclass
from email.utils import formatdate
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from .errors import MalformedSignature, SignatureInvalid

REQUEST_TARGET = "(request-target)"
SIGNED_HEADERS = [REQUEST_TARGET, "host", "date", "digest"]
REQUIRED_PARAMS = ("keyId", "headers", "signature")


@dataclass(frozen=True)
class SignatureContext:
    key_id: str
    headers: List[str]
    signing_string: str
    algorithm: str = "rsa-sha256"


def parse_signature_header(header: str) -> Dict[str, str]:
    params = {}
    for part in header.split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        params[key.strip()] = value.strip().strip('"')
    missing = [name for name in REQUIRED_PARAMS if not params.get(name)]
    if missing:
        raise MalformedSignature(f"Signature header lacks {', '.join(missing)}")
    return params


def body_digest(body: bytes) -> str:
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode()


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def build_signing_string(
    header_names: List[str], headers: Mapping[str, str], method: str, path: str
) -> str:
    lines = []
    for name in header_names:
        if name == REQUEST_TARGET:
            lines.append(f"{REQUEST_TARGET}: {method.lower()} {path}")
            continue
        value = _header(headers, name)
        if value is None:
            raise SignatureInvalid(f"Signed header {name!r} missing from request")
        lines.append(f"{name}: {value}")
    return "\n".join(lines)


def signature_context(
    key_id: str, url: str, body: bytes, method: str = "POST", date: Optional[str] = None
) -> Tuple[SignatureContext, Dict[str, str]]:
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        path += f"?{parts.query}"
    headers = {
        "host": parts.netloc,
        "date": date or formatdate(usegmt=True),
        "digest": body_digest(body),
    }
    signing_string = build_signing_string(SIGNED_HEADERS, headers, method, path)
    return SignatureContext(key_id, list(SIGNED_HEADERS), signing_string), headers


def signature_header(context: SignatureContext, signature: bytes) -> str:
    return (
        f'keyId="{context.key_id}",algorithm="{context.algorithm}",'
        f'headers="{" ".join(context.headers)}",'
        f'signature="{base64.b64encode(signature).decode()}"'
    )
