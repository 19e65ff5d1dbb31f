"""Entrypoint: run the Fin CRAG server."""

import uvicorn

from fin_crag.api.app import create_app
from fin_crag.config.settings import Settings


def main() -> None:
    settings = Settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
