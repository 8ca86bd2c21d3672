"""
Root entrypoint — run with:
    uvicorn main:app
    or:  python main.py
"""

from relay.main import app  # noqa: F401

if __name__ == "__main__":
    import uvicorn

    from relay.core.config import settings

    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT)
