# quotedoc/main.py
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from quotedoc.config import get_settings
from quotedoc.middleware import install_middlewares
from quotedoc.logging_config import setup_logging
from quotedoc.routers import health, templates

setup_logging()
app = FastAPI(
    title="Quote Document Generator",
    description="Fills DOCX agreement templates with quote data",
    version="1.0.0",
)
install_middlewares(app)

# Routers
app.include_router(health.router)
app.include_router(templates.router)


@app.get("/")
def root():
    return {"app": get_settings().app_name, "status": "running", "version": "1.0.0", "docs": "/docs"}
