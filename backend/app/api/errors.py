from typing import Optional

from fastapi import HTTPException


def api_error(status_code: int, error: str, details: Optional[str] = None) -> HTTPException:
    """HTTPException whose body is {"error": ..., "details": ...}."""
    return HTTPException(status_code=status_code, detail={"error": error, "details": details})
