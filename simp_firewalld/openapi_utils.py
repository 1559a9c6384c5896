import json
import logging
from pathlib import Path

from fastapi import FastAPI

logger = logging.getLogger(__name__)


def write_openapi_document(app: FastAPI, output_path: Path) -> Path:
    """
    Write the API's OpenAPI schema so rule authors can generate clients from
    it. Relative paths are taken from the working directory.
    """
    output_path = Path(output_path).expanduser().resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(app.openapi(), indent=2, sort_keys=True) + "\n", encoding="utf-8")

    logger.info("OpenAPI schema written to %s", output_path)
    return output_path
