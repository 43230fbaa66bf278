from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Helpers for loose JSON extraction from model output and retry backoff.
"""
import json
import random
from typing import Any, Dict, Optional


def clip(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


def safe_json_loads(s: str) -> Optional[Dict[str, Any]]:
    try:
        obj = json.loads(s)
    except (TypeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None


def strip_code_fence(text: str) -> str:
    """
    Return the body of a leading ``` / ~~~ fenced block, or the stripped text.

    A language tag on the opening fence (```json) is dropped. A missing closing
    fence is tolerated.
    """
    t = (text or "").strip()
    lines = t.splitlines()
    if not lines:
        return t

    head = lines[0].lstrip()
    fence = "```" if head.startswith("```") else "~~~" if head.startswith("~~~") else None
    if fence is None:
        return t

    body: list[str] = []
    for line in lines[1:]:
        if line.lstrip().startswith(fence):
            break
        body.append(line)
    return "\n".join(body).strip()


def extract_json_object(text: str) -> Optional[str]:
    """
    Best-effort extraction of the first balanced `{...}` object from a text blob.

    Braces inside double-quoted strings (with escapes) are ignored.

    Returns:
        The substring holding the first complete object, or None.
    """
    t = strip_code_fence(text)
    start = t.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(t)):
        ch = t[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return t[start : i + 1]
    return None


def parse_loose_json(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object out of free-form model output.

    Tries the whole (fence-stripped) text first, then the first balanced object.
    """
    t = strip_code_fence(text)
    if not t:
        return None
    direct = safe_json_loads(t)
    if direct is not None:
        return direct
    candidate = extract_json_object(t)
    if candidate is None:
        return None
    return safe_json_loads(candidate)


def backoff_delay(attempt: int, base_s: float, jitter_s: float) -> float:
    """
    Exponential backoff with jitter.
    attempt=0 => base, attempt=1 => 2*base, etc.
    """
    exp = base_s * (2 ** attempt)
    jitter = random.uniform(0.0, jitter_s)
    return exp + jitter
