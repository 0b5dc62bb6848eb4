"""Run the billing API with uvicorn."""

import os

import uvicorn

from api.app import create_default_app


def main():
    uvicorn.run(
        create_default_app(),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
