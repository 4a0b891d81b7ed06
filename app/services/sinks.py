"""Destinations for embedded records: a Redis vector set or a JSON file."""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import redis

from app.exceptions import SinkError

logger = logging.getLogger(__name__)


@dataclass
class ExportRecord:
    element_id: str
    vector: list[float]
    attributes: dict[str, str] = field(default_factory=dict)


class VectorSetSink:
    """Adds vectors to a Redis vector set with ``VADD``."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @staticmethod
    def build_command(
        set_name: str,
        element_id: str,
        vector: list[float],
        attributes: Optional[dict[str, str]] = None,
    ) -> list[str]:
        command = ["VADD", set_name, "VALUES", str(len(vector)), *(str(v) for v in vector), element_id]
        if attributes:
            command.extend(["SETATTR", json.dumps(attributes)])
        return command

    def insert(
        self,
        set_name: str,
        element_id: str,
        vector: list[float],
        attributes: Optional[dict[str, str]] = None,
    ) -> None:
        """
        Insert one element.

        Raises:
            SinkError: Redis rejected the command
        """
        command = self.build_command(set_name, element_id, vector, attributes)
        try:
            self.client.execute_command(*command)
        except redis.RedisError as e:
            raise SinkError(f"Failed to add vector for '{element_id}' to {set_name}: {e}") from e

    def dimension(self, set_name: str) -> int:
        """
        Dimension of the vectors stored in a set (``VDIM``).

        Raises:
            SinkError: the set does not exist or Redis rejected the command
        """
        try:
            result = self.client.execute_command("VDIM", set_name)
        except redis.RedisError as e:
            raise SinkError(f"Failed to read dimension of {set_name}: {e}") from e
        if result is None:
            raise SinkError(f"Vector set {set_name} does not exist")
        return int(result)


class JsonExporter:
    """Writes a job's accumulated records to a single JSON file."""

    def __init__(self, export_dir: str):
        self.export_dir = Path(export_dir)

    def output_path(self, output_name: str) -> Path:
        name = Path(output_name).name
        if not name.lower().endswith(".json"):
            name = f"{name}.json"
        return self.export_dir / name

    def flush(self, output_name: str, records: list[ExportRecord], vector_set_name: Optional[str] = None) -> str:
        """
        Write all records in one go.

        Args:
            output_name: Requested file name; directory parts are dropped
            records: Records accumulated during the job
            vector_set_name: Recorded in the file for reference

        Returns:
            Path of the written file
        """
        path = self.output_path(output_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "vectorSetName": vector_set_name,
            "count": len(records),
            "vectors": [
                {"element": r.element_id, "vector": r.vector, "attributes": r.attributes}
                for r in records
            ],
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(document, f)
        logger.info(f"💾 Exported {len(records)} vectors to {path}")
        return str(path)
