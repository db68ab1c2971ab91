import uvicorn

from ai_responder.api.config import get_settings


def main():
    settings = get_settings()
    uvicorn.run(
        "ai_responder.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
