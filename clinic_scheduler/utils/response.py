from typing import Any, Optional
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi import status
from clinic_scheduler.exceptions import RETRYABLE, SchedulingError

class APIResponse:
    @staticmethod
    def success(data: Any, message: str = "Success", status_code: int = status.HTTP_200_OK):
        return JSONResponse(
            status_code=status_code,
            content={
                "success": True,
                "message": message,
                "data": jsonable_encoder(data),
                "error": None
            }
        )

    @staticmethod
    def created(data: Any, message: str = "Resource created successfully"):
        return APIResponse.success(data, message=message, status_code=status.HTTP_201_CREATED)

    @staticmethod
    def error(message: str, error_type: str = "Error", status_code: int = status.HTTP_400_BAD_REQUEST, details: Optional[Any] = None):
        return JSONResponse(
            status_code=status_code,
            content={
                "success": False,
                "message": None,
                "data": None,
                "error": {
                    "code": status_code,
                    "message": message,
                    "type": error_type,
                    "details": jsonable_encoder(details)
                }
            }
        )

    @staticmethod
    def from_exception(exc: SchedulingError):
        response = APIResponse.error(
            exc.message,
            error_type=exc.error_type,
            status_code=exc.status_code,
            details=exc.details or None
        )
        if exc.category == RETRYABLE:
            response.headers["Retry-After"] = "1"
        return response
