"""
FastAPI application for the Contribot pipeline triggers.

Pipeline components are built lazily on first request (see
backend.routes.get_components) so importing the app needs no credentials.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.routes import router
from utils.logger import setup_logger

logger = setup_logger(name=__name__)

app = FastAPI(
    title="Contribot API",
    description="Triggers for repository discovery, issue scraping and AI annotation",
    version="1.0.0"
)

# Allow the dashboard front end to call the API during local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/")
def health():
    """Health check."""
    return {"service": "contribot", "status": "ok"}


logger.info("FastAPI app initialized")
