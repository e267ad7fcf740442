from typing import Dict, NoReturn, Optional

from fastapi import HTTPException, status

from tenant_rag.schemas import PipelineError

STATUS_BY_CODE: Dict[str, int] = {
    "INVALID_INPUT": status.HTTP_400_BAD_REQUEST,
    "EMPTY_CONTENT": status.HTTP_400_BAD_REQUEST,
    "TENANT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "DOCUMENT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "SECRETS_DECRYPTION_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "CONFIG_MISMATCH": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "TENANT_CONNECTION_FAILED": status.HTTP_502_BAD_GATEWAY,
    "EMBEDDING_PROVIDER_ERROR": status.HTTP_502_BAD_GATEWAY,
    "GENERATION_PROVIDER_ERROR": status.HTTP_502_BAD_GATEWAY,
    "VECTOR_STORE_ERROR": status.HTTP_502_BAD_GATEWAY,
    "REPOSITORY_ERROR": status.HTTP_502_BAD_GATEWAY,
}


def status_for(error: PipelineError) -> int:
    if error.timeout:
        return status.HTTP_504_GATEWAY_TIMEOUT
    return STATUS_BY_CODE.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def error_body(error: PipelineError, trace_id: Optional[str] = None) -> dict:
    body = {"error": error.message, "code": error.code}
    if trace_id:
        body["trace_id"] = trace_id
    return body


def raise_pipeline_error(error: Optional[PipelineError], trace_id: Optional[str] = None) -> NoReturn:
    error = error or PipelineError(code="INTERNAL_ERROR", message="An unexpected error occurred")
    raise HTTPException(
        status_code=status_for(error),
        detail=error_body(error, trace_id),
        headers={"X-Trace-Id": trace_id} if trace_id else None,
    )
