"""
Parser for the free-form "advanced configuration" field of a proxy host.

Accepted shapes:
  - a JSON array of route objects ({"match": ..., "handle": [...]})
  - a single route object
  - a single bare handler object ({"handler": "..."})
  - the legacy redirect shorthand {"redir": [{"from", "to", "status_code"?}]}

A host's advanced config can never break document generation for other
hosts, so every failure is logged and turned into an empty result.
"""
import json
import logging
from typing import Any

from caddy_panel.caddy.document import MatchClause, Route, StaticResponseHandler, handler_from_dict

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_STATUS = 301


class FragmentError(ValueError):
    """Raised internally for a shape that cannot be turned into routes."""


def _is_route(value: Any) -> bool:
    # an empty match object is a host-wide rule, so only presence is checked here
    return isinstance(value, dict) and value.get("match") is not None and value.get("handle") is not None


def _match_clauses(raw: Any) -> list[MatchClause]:
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list) or not all(isinstance(m, dict) for m in raw):
        raise FragmentError("match must be an object or a list of objects")
    return [MatchClause.from_dict(m) for m in raw] or [MatchClause()]


def _route(obj: dict[str, Any]) -> Route:
    handle = obj.get("handle")
    if isinstance(handle, dict):
        handle = [handle]
    if not isinstance(handle, list) or not all(isinstance(h, dict) for h in handle):
        raise FragmentError("handle must be a list of handler objects")
    terminal = obj.get("terminal")
    return Route(
        match=_match_clauses(obj.get("match")),
        handle=[handler_from_dict(h) for h in handle],
        terminal=terminal if isinstance(terminal, bool) else None,
    )


def _redirects(entries: Any) -> list[Route]:
    if isinstance(entries, dict):
        entries = [entries]
    if not isinstance(entries, list):
        raise FragmentError("redir must be a list")
    routes = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("from") or not entry.get("to"):
            logger.debug("[fragments] Skipping redirect without 'from' and 'to'")
            continue
        status = entry.get("status_code") or DEFAULT_REDIRECT_STATUS
        routes.append(Route(
            match=[MatchClause(extra={"path": [str(entry["from"])]})],
            handle=[StaticResponseHandler.redirect(str(entry["to"]), int(status))],
            terminal=True,
        ))
    return routes


def _from_value(value: Any) -> list[Route]:
    if isinstance(value, list):
        routes = []
        for index, item in enumerate(value):
            if not _is_route(item):
                logger.debug(f"[fragments] Skipping element {index}: not a route object")
                continue
            try:
                routes.append(_route(item))
            except FragmentError as e:
                logger.debug(f"[fragments] Skipping element {index}: {e}")
        return routes
    if isinstance(value, dict):
        if "redir" in value:
            return _redirects(value["redir"])
        if _is_route(value):
            return [_route(value)]
        if "handler" in value:
            return [Route(match=[MatchClause()], handle=[handler_from_dict(value)])]
    raise FragmentError(f"unrecognised fragment of type {type(value).__name__}")


def parse_advanced_config(text: str | None, domain: str | None = None) -> list[Route]:
    """
    Parse an advanced-config string into route fragments.

    Returned routes may have empty host lists; the document builder scopes
    them to the owning domain. Never raises.
    """
    if text is None or not isinstance(text, str) or not text.strip():
        return []
    label = domain or "<unknown host>"
    try:
        value = json.loads(text)
    except (ValueError, RecursionError) as e:
        logger.warning(f"[fragments] Ignoring advanced config for {label}: invalid JSON ({e})")
        return []
    try:
        return _from_value(value)
    except (FragmentError, TypeError, ValueError) as e:
        logger.warning(f"[fragments] Ignoring advanced config for {label}: {e}")
        return []
