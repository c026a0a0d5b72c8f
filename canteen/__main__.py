"""Run the API server: python -m canteen"""

import uvicorn

from canteen.core.config import get_settings


def main():
    settings = get_settings()
    uvicorn.run(
        "canteen.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )


if __name__ == "__main__":
    main()
