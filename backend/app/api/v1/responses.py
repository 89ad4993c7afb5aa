"""
Rendering of OperationResult at the HTTP edge.
"""

from fastapi.responses import JSONResponse

from backend.app.schemas.settlement import OperationResult


def operation_response(result: OperationResult) -> JSONResponse:
    """Failed results keep the status code of the error that produced them."""
    return JSONResponse(status_code=result.status_code, content=result.model_dump(mode="json"))
