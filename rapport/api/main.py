import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rapport.api.routes import batch, coach, messages
from rapport.config import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Rapport: Conversation Analytics and Relationship Coach",
    description="Indexes chat messages by sentiment and communication pattern and coaches people on their relationships.",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(messages.router)
app.include_router(coach.router)
app.include_router(batch.router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "rapport"}


@app.on_event("startup")
async def startup():
    logger.info("Rapport starting up...")
    # Optionally initialize database tables
    try:
        from rapport.database import init_db
        await init_db()
        logger.info("Database tables ensured")
    except Exception as e:
        logger.warning("Could not auto-create tables (run migrations instead): %s", e)


def run():
    uvicorn.run(
        "rapport.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )


if __name__ == "__main__":
    run()
