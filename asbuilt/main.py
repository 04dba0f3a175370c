# path: asbuilt-gps/asbuilt/main.py

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from asbuilt.api.routes.gps import router as gps_router
from asbuilt.config import LOG_LEVEL
from asbuilt.errors import PersistenceError

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s:%(name)s:%(message)s")

app = FastAPI(title="asbuilt-gps")

app.include_router(gps_router)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logging.getLogger(__name__).error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})
