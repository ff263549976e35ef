# app/lib/json_tools.py
import json
import re
from typing import Any

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", flags=re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


def load_json_block(text: str) -> Any:
    """
    Parse the JSON a chat model returned, tolerating ``` fences and prose
    around the payload. Raises ValueError when nothing parses.
    """
    s = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", (text or "").strip()))
    try:
        return json.loads(s)
    except ValueError:
        pass
    # outermost array or object embedded in prose
    for pattern in (r"\{.*\}", r"\[.*\]"):
        m = re.search(pattern, s, flags=re.DOTALL)
        if m:
            try:
                return json.loads(m.group(0))
            except ValueError:
                continue
    raise ValueError(f"no JSON payload in model output ({len(s)} chars)")
