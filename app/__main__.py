import uvicorn

from app.config import settings


def uvicorn_options(config=settings) -> dict:
    return {
        "host": config.app_host,
        "port": config.app_port,
        "reload": config.app_reload,
        "log_config": None,
    }


def main() -> None:
    uvicorn.run("app.main:create_app", factory=True, **uvicorn_options())


if __name__ == "__main__":
    main()
