"""
Standard API response format and utility functions.
"""

import math
from typing import Any


def success_response(data: Any = None, message: str = "Success") -> dict:
    return {"success": True, "data": data, "message": message}


def error_response(message: str = "Error", data: Any = None) -> dict:
    return {"success": False, "data": data, "message": message}


def paginated_response(data: list, total: int, page: int, limit: int, message: str = "Success") -> dict:
    body = success_response(data=data, message=message)
    body["pagination"] = {
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit) if limit > 0 else 0,
    }
    return body
