import asyncio
import logging
import os

from dotenv import load_dotenv

load_dotenv(".env.local"); load_dotenv()  # also loads .env if present

from typing import Optional  # noqa: E402

from fastapi import FastAPI, Request, Response  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from pydantic import BaseModel  # noqa: E402

from mail_relay import IncomingFile, RelayError, RelayService, configure_logging, load_settings  # noqa: E402

settings = load_settings()
configure_logging(settings)
logger = logging.getLogger("mail_relay.api")

app = FastAPI(title="Expense reimbursement relay")
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.allowed_origins),
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    max_age=86400,
)

relay_service = RelayService(settings)


class RelayResponse(BaseModel):
    success: bool
    status: str
    message: str
    pdf_filename: str
    total_amount: float
    attachments_processed: int


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    body = {"success": False, "status": "error", "error": exc.message}
    body.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.get("/health")
def health():
    return {"ok": True, "smtp_host": settings.smtp_host, "admin_configured": bool(settings.admin_email)}


@app.options("/form-handler")
def form_handler_preflight():
    return Response(status_code=200)


@app.api_route("/form-handler", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE"])
def form_handler_wrong_method():
    return JSONResponse(status_code=405, content={"success": False, "error": "Méthode non autorisée"})


@app.post("/form-handler", response_model=RelayResponse)
async def form_handler(request: Request):
    form = await request.form()
    fields = {}
    uploads = []
    for key, value in form.multi_items():
        if isinstance(value, str):
            fields[key] = value
        else:
            uploads.append(
                IncomingFile(
                    field=key,
                    filename=value.filename or key,
                    content_type=value.content_type or "",
                    content=await value.read(),
                )
            )
    await form.close()

    client_ip: Optional[str] = request.client.host if request.client else None
    try:
        result = await asyncio.to_thread(relay_service.handle, fields, uploads, client_ip)
    except RelayError:
        raise
    except Exception as e:
        logger.exception("Unexpected relay failure")
        return JSONResponse(
            status_code=500,
            content={"success": False, "status": "error", "error": f"Erreur interne: {e}"},
        )
    return result


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("RELAY_HOST", "0.0.0.0"), port=int(os.getenv("RELAY_PORT", "8000")))
