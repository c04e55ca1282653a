from stockbook.schemas.common import ErrorOut


_ERROR_EXAMPLES: dict[int, tuple[str, str]] = {
    400: ("bad_request", "Bad request"),
    401: ("unauthorized", "Unauthorized"),
    403: ("forbidden", "Forbidden"),
    404: ("not_found", "Resource not found"),
    409: ("conflict", "Conflict"),
    422: ("validation_error", "Validation error"),
    429: ("rate_limited", "Too many requests"),
    500: ("internal_error", "Internal server error"),
}

_FILE_MEDIA_TYPES: dict[str, str] = {
    "csv": "text/csv",
    "pdf": "application/pdf",
}


def _error_example(status_code: int) -> dict:
    code, message = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error"))
    return {
        "model": ErrorOut,
        "description": message,
        "content": {
            "application/json": {
                "example": {
                    "error": {
                        "code": code,
                        "message": message,
                        "request_id": "request-id",
                        "path": "/inventory/movements",
                        "details": None,
                    }
                }
            }
        },
    }


def error_responses(*status_codes: int) -> dict[int, dict]:
    return {status_code: _error_example(status_code) for status_code in status_codes}


def file_download_responses(*formats: str) -> dict[int, dict]:
    """OpenAPI entry for endpoints that stream a CSV or PDF attachment."""
    content = {_FILE_MEDIA_TYPES[fmt]: {"schema": {"type": "string", "format": "binary"}} for fmt in formats}
    return {200: {"description": "File attachment", "content": content}}
