import asyncio
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, Response

from app.ai_feature.errors import QueryPipelineError
from app.ai_feature.service import QueryService, get_query_service
from app.core import schemas

router = APIRouter(prefix="/api", tags=["Query"])

service_dep = Annotated[QueryService, Depends(get_query_service)]

PDF_FILENAME = "rekap_penjualan.pdf"


@router.post(
    "/query",
    response_model=schemas.QueryResponse,
    responses={
        400: {"model": schemas.QueryErrorResponse},
        500: {"model": schemas.QueryErrorResponse},
    },
)
async def ask_question(
    service: service_dep, payload: Optional[schemas.QueryRequest] = None
):
    """
    Answer a natural-language question about members, products and orders.
    Returns JSON, or a PDF recap when asked for (format="pdf" or words like
    "rekap", "cetak", "export" in the question).
    """
    try:
        outcome = await service.run(payload or schemas.QueryRequest())
    except QueryPipelineError as error:
        return JSONResponse(status_code=error.status_code, content=error.to_payload())
    except Exception as error:
        logging.exception(f"Error in /api/query: {error}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(error)},
        )

    if outcome.want_pdf:
        pdf_bytes = await asyncio.to_thread(service.render_pdf, outcome)
        return Response(
            content=pdf_bytes,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{PDF_FILENAME}"'},
        )

    return schemas.QueryResponse(
        answer=outcome.answer,
        executed_sql=outcome.executed_sql,
        row_count=outcome.row_count,
        rows=outcome.rows,
    )
