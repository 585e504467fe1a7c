import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from eventide.api.routes.extract import router as extract_router
from eventide.config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Eventide API",
    description="Event extraction from flyers, video links and text",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(extract_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
