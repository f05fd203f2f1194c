from typing import Any, Dict, List, Optional

from flask import Response, jsonify, request


class APIResponse:
    """JSON envelope shared by every /api endpoint: success, message, data or errors."""

    @staticmethod
    def _envelope(success: bool, message: str, status_code: int, **body) -> Response:
        return jsonify({'success': success, 'message': message, **body}), status_code

    @staticmethod
    def success(data: Any = None, message: str = "Success", status_code: int = 200) -> Response:
        return APIResponse._envelope(True, message, status_code, data=data)

    @staticmethod
    def error(message: str, errors: Optional[Dict] = None, status_code: int = 400) -> Response:
        return APIResponse._envelope(False, message, status_code, errors=errors or {})

    @staticmethod
    def validation_error(errors: Dict[str, List[str]]) -> Response:
        """422 with per-field messages"""
        return APIResponse.error("Validation failed", errors=errors, status_code=422)

    @staticmethod
    def not_found(resource: str = "Resource") -> Response:
        return APIResponse.error(f"{resource} not found", status_code=404)

    @staticmethod
    def unavailable(message: str = "Service temporarily unavailable. Please try again shortly.") -> Response:
        return APIResponse.error(message, status_code=503)

    @staticmethod
    def request_payload() -> Dict:
        """JSON body when sent as JSON, otherwise the submitted form."""
        if request.is_json:
            return request.get_json(silent=True) or {}
        return request.form.to_dict()
