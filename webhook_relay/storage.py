"""Flat-file persistence for the endpoint collection.

The whole collection is rewritten as a pretty-printed JSON array on every
mutation. The file is assumed to be owned by a single relay process.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from webhook_relay.errors import PersistenceError
from webhook_relay.models import Endpoint

logger = logging.getLogger(__name__)

_ENDPOINT_LIST = TypeAdapter(list[Endpoint])


class EndpointStore:
    """Reads and writes the endpoint collection at a fixed path."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> list[Endpoint]:
        """Read the persisted collection.

        Raises:
            PersistenceError: The file is missing, unreadable, or does not
                hold a JSON array of endpoint records.
        """
        try:
            contents = self.path.read_bytes()
        except OSError as e:
            raise PersistenceError(str(self.path), f"read failed: {e}") from e

        # Bytes go straight to the validator, so bad UTF-8 is a schema error too.
        try:
            return _ENDPOINT_LIST.validate_json(contents)
        except SchemaError as e:
            raise PersistenceError(
                str(self.path), f"malformed endpoints file: {e.error_count()} error(s)"
            ) from e
        except UnicodeDecodeError as e:
            raise PersistenceError(str(self.path), f"malformed endpoints file: {e}") from e

    def save(self, endpoints: list[Endpoint]) -> None:
        """Write the full collection, replacing the file atomically.

        Raises:
            PersistenceError: The file could not be written.
        """
        records = [e.model_dump(by_alias=True) for e in endpoints]
        data = json.dumps(records, indent=2)

        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(str(self.path), f"write failed: {e}") from e

        logger.debug("Saved %d endpoints to %s", len(records), self.path)
