import math
from typing import Any, Dict, List


def clamp_page(limit: int, offset: int, max_limit: int = 100):
    limit = max(1, min(max_limit, int(limit or 50)))
    offset = max(0, int(offset or 0))
    return limit, offset


def page_envelope(items: List[Any], total: int, limit: int, offset: int) -> Dict[str, Any]:
    return {
        "data": items,
        "total": total,
        "page": offset // limit + 1,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
