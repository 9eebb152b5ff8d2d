"""Cosigner address helpers and a strict URL parser."""

from __future__ import annotations

from dataclasses import dataclass

_HOST_SAFE = set("-_.~!$&'()*+,;=:[]<>\"")
_HEX = set("0123456789abcdefABCDEF")


def _go_quote(text: str) -> str:
    """Quote a string with double quotes and backslash escapes."""
    out = ['"']
    for ch in text:
        if ch == "\\":
            out.append("\\\\")
        elif ch == '"':
            out.append('\\"')
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\x{ord(ch):02x}")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


@dataclass(frozen=True)
class _ParsedURL:
    scheme: str
    host: str
    path: str
    opaque: str = ""
    query: str = ""
    fragment: str = ""


def _split_scheme(raw: str) -> tuple[str, str]:
    for i, ch in enumerate(raw):
        if ch.isascii() and ch.isalpha():
            continue
        if ch.isascii() and (ch.isdigit() or ch in "+-."):
            if i == 0:
                return "", raw
            continue
        if ch == ":":
            if i == 0:
                raise ValueError("missing protocol scheme")
            return raw[:i], raw[i + 1:]
        return "", raw
    return "", raw


def _check_port(port_part: str, host: str) -> None:
    if port_part == "":
        return
    if not port_part.startswith(":") or not all(c.isdigit() for c in port_part[1:]):
        raise ValueError(f"invalid port {_go_quote(port_part)} after host")


def _validate_host(host: str) -> None:
    if host.startswith("["):
        end = host.find("]")
        if end < 0:
            raise ValueError("missing ']' in host")
        _check_port(host[end + 1:], host)
        return
    colon = host.rfind(":")
    if colon >= 0:
        _check_port(host[colon:], host)
    i = 0
    while i < len(host):
        ch = host[i]
        if ch == "%":
            escape = host[i:i + 3]
            if len(escape) < 3 or not (escape[1] in _HEX and escape[2] in _HEX):
                raise ValueError(f"invalid URL escape {_go_quote(escape)}")
            i += 3
            continue
        if ch.isascii() and not ch.isalnum() and ch not in _HEX and ch not in _HOST_SAFE:
            raise ValueError(f"invalid character {_go_quote(ch)} in host name")
        i += 1


def _parse_url(raw: str) -> _ParsedURL:
    """Parse ``raw`` strictly, raising ValueError with a 'parse "..."' message."""
    try:
        return _parse_url_inner(raw)
    except ValueError as exc:
        raise ValueError(f"parse {_go_quote(raw)}: {exc}") from None


def _parse_url_inner(raw: str) -> _ParsedURL:
    rest, _, fragment = raw.partition("#")
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in rest):
        raise ValueError("net/url: invalid control character in URL")
    if rest == "":
        raise ValueError("empty url")
    scheme, rest = _split_scheme(rest)
    scheme = scheme.lower()
    rest, _, query = rest.partition("?")
    if scheme and not rest.startswith("/"):
        return _ParsedURL(scheme, "", "", opaque=rest, query=query, fragment=fragment)
    if not scheme:
        segment = rest.split("/", 1)[0]
        if ":" in segment:
            raise ValueError("first path segment in URL cannot contain colon")
    host = ""
    if rest.startswith("//") and (scheme or not rest.startswith("///")):
        authority = rest[2:]
        slash = authority.find("/")
        if slash >= 0:
            authority, rest = authority[:slash], authority[slash:]
        else:
            rest = ""
        host = authority.rsplit("@", 1)[-1]
        _validate_host(host)
    return _ParsedURL(scheme, host, rest, query=query, fragment=fragment)


def _split_host_port(hostport: str) -> tuple[str, str]:
    """Split ``host:port`` the way network dialers expect, raising ValueError."""

    def err(reason: str) -> ValueError:
        return ValueError(f"address {hostport}: {reason}")

    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise err("missing ']' in address")
        if end + 1 == len(hostport):
            raise err("missing port in address")
        if hostport[end + 1] != ":":
            if hostport[end + 1] == "]":
                raise err("missing ']' in address")
            raise err("missing port in address")
        host, port = hostport[1:end], hostport[end + 2:]
        if ":" in port:
            raise err("too many colons in address")
        return host, port
    colon = hostport.rfind(":")
    if colon < 0:
        raise err("missing port in address")
    host, port = hostport[:colon], hostport[colon + 1:]
    if ":" in host:
        raise err("too many colons in address")
    if "[" in host or "]" in host:
        raise err("unexpected '[' or ']' in address")
    return host, port


def sanitize_address(address: str) -> str:
    """Return the host:port part of a URL address."""
    try:
        return _parse_url(address).host
    except ValueError as exc:
        raise ValueError(f"error parsing URL: {exc}") from None


def multi_address(addresses: list[str]) -> str:
    """Join the host parts of ``addresses`` into a multi:/// target."""
    hosts = [sanitize_address(addr) for addr in addresses]
    return "multi:///" + ",".join(hosts)