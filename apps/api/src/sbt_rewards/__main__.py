import uvicorn

from sbt_rewards.core.settings import settings


def main() -> None:
    """Serve the rewards API; auto-reload only while developing locally."""
    uvicorn.run(
        "sbt_rewards.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
        log_config=None,
    )


if __name__ == "__main__":
    main()
