"""On-disk persistence for the tunnel registry."""

import json
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from ..common.exceptions import ValidationError
from ..common.logging import get_logger
from .migration import migrate
from .models import CURRENT_SCHEMA_VERSION, Registry

logger = get_logger(__name__)


class ConfigStore:
    """Loads, migrates and saves the registry JSON document.

    There is no file locking: two concurrent invocations race and the last
    writer wins.
    """

    def __init__(self, path: str | Path):
        """Initialize ConfigStore.

        Args:
            path: Location of the registry JSON file
        """
        self.path = Path(path)

    def load(self) -> Registry:
        """Load the registry, migrating older shapes.

        A missing file yields an empty registry. So does a malformed one: the
        problem is logged and the broken file is left in place until the
        next save overwrites it.
        """
        if not self.path.exists():
            logger.debug("No registry file, starting empty", path=str(self.path))
            return Registry()

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            registry = Registry.model_validate(migrate(raw))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            logger.error(
                "Unreadable registry file, starting empty",
                path=str(self.path),
                error=str(e),
            )
            return Registry()
        except PydanticValidationError as e:
            logger.error(
                "Invalid registry file, starting empty",
                path=str(self.path),
                errors=e.error_count(),
            )
            return Registry()

        logger.debug(
            "Registry loaded", path=str(self.path), tunnels=len(registry.tunnels)
        )
        return registry

    def save(self, registry: Registry) -> None:
        """Write the complete registry, replacing the previous file atomically."""
        registry.version = CURRENT_SCHEMA_VERSION
        content = json.dumps(registry.to_document(), indent=2) + "\n"

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(temp_path, self.path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

        logger.info(
            "Registry saved", path=str(self.path), tunnels=len(registry.tunnels)
        )

    @contextmanager
    def session(self) -> Iterator[Registry]:
        """Load the registry for one command and save it when the block succeeds.

        Nothing is written if the block raises, so a failed command leaves
        the file as it was.
        """
        registry = self.load()
        yield registry
        self.save(registry)
