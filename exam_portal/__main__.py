"""Run the API with uvicorn: ``python -m exam_portal`` or ``exam-portal``."""

import uvicorn

from exam_portal import config


def main() -> None:
    uvicorn.run("exam_portal.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
