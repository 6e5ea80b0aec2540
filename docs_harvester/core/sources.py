"""Built-in documentation sources and loading of source batch files."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import ValidationError as PydanticValidationError

from ..pipelines.scraper.base import DocumentSource
from .errors import ConfigurationError, ResourceNotFoundError

logger = logging.getLogger(__name__)

_DEFAULT_SOURCES: List[Dict[str, Any]] = [
    {
        "name": "Nervos CKB Docs",
        "url": "https://docs.nervos.org",
        "type": "website",
        "selector": "article",
    },
    {
        "name": "Nervos RFCs",
        "url": "https://github.com/nervosnetwork/rfcs",
        "type": "repository",
    },
    {
        "name": "Nervos RFC Articles",
        "url": "https://docs.ckb.dev/docs/rfcs/introduction",
        "type": "website",
        "selector": "article",
    },
    {
        "name": "CKB Developer Docs",
        "url": "https://docs.nervos.org/docs/getting-started/how-ckb-works",
        "type": "website",
        "selector": ".markdown",
    },
    {"name": "CKB CCC", "url": "https://github.com/ckb-devrel/ccc", "type": "repository"},
    {
        "name": "Spore Dob 0 Protocol",
        "url": "https://github.com/sporeprotocol/spore-dob-0",
        "type": "repository",
    },
    {"name": "Spore SDK", "url": "https://github.com/sporeprotocol/spore-sdk", "type": "repository"},
    {"name": "Spore Docs", "url": "https://docs.spore.pro/", "type": "website"},
    {"name": "Fiber", "url": "https://github.com/nervosnetwork/fiber", "type": "repository"},
    {
        "name": "RGB++ Design",
        "url": "https://github.com/utxostack/RGBPlusPlus-design",
        "type": "repository",
    },
    {"name": "RGB++ SDK", "url": "https://github.com/utxostack/rgbpp-sdk", "type": "repository"},
]


def default_sources() -> List[DocumentSource]:
    """Fresh copies of the built-in sources."""
    return [DocumentSource.model_validate(entry) for entry in _DEFAULT_SOURCES]


def load_sources_file(path: Union[str, Path]) -> List[DocumentSource]:
    """Load a JSON list of sources (or ``{"sources": [...]}``)."""
    path = Path(path)
    if not path.exists():
        raise ResourceNotFoundError(f"Sources file not found: {path}", context={"path": str(path)})

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in sources file {path}: {e}", cause=e) from e

    if isinstance(data, dict):
        data = data.get("sources", [])
    if not isinstance(data, list):
        raise ConfigurationError(f"Sources file {path} must contain a list of sources")

    try:
        sources = [DocumentSource.model_validate(entry) for entry in data]
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid source definition in {path}: {e}", cause=e) from e

    logger.info(f"Loaded {len(sources)} sources from {path}")
    return sources
