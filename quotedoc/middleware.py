# quotedoc/middleware.py
from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from quotedoc.config import get_settings


def install_middlewares(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_origin_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        # the download name and render diagnostics travel in headers
        expose_headers=["Content-Disposition", "X-Tokens-Replaced", "X-Fallback-Used", "X-Processing-Time-Ms"],
        max_age=86400,
    )
