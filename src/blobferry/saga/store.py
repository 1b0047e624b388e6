"""
Durable saga records.

One ``SagaRecord`` per request digest. The orchestrator writes it after
every successful step, so a restarted process picks up from the last
completed state instead of paying the fee or bridging twice.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from blobferry.errors import BlobFerryError
from blobferry.types import SAGA_ORDER, STATE_ARTIFACTS, SagaState
from blobferry.utils.logging import get_logger

_logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _attempt_key(state: SagaState, sub_step: Optional[str]) -> str:
    return state.value if sub_step is None else f"{state.value}.{sub_step}"


class SagaRecord(BaseModel):
    """
    Persistent state of one upload saga.

    Artifacts are kept in their JSON form, keyed by the state that produced
    them, and parsed back into their model on access.
    """

    digest: str = Field(..., min_length=1, description="Request digest")
    payer: str = Field(..., description="Source-chain payer address")
    current_state: SagaState = Field(default=SagaState.QUOTING)
    last_completed_state: Optional[SagaState] = None
    failed_state: Optional[SagaState] = Field(
        default=None,
        description="State that raised the terminal error, if FAILED",
    )
    artifacts: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    last_error: Optional[Dict[str, Any]] = None
    attempt_counts: Dict[str, int] = Field(default_factory=dict)
    fee_percent: Optional[Decimal] = None
    sponsored: Optional[bool] = None
    finalize_progress: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def artifact(self, state: SagaState) -> Optional[BaseModel]:
        raw = self.artifacts.get(state.value)
        if raw is None:
            return None
        return STATE_ARTIFACTS[state].model_validate(raw)

    @property
    def last_artifact(self) -> Optional[BaseModel]:
        if self.last_completed_state is None:
            return None
        return self.artifact(self.last_completed_state)

    def complete(self, state: SagaState, artifact: BaseModel) -> None:
        """Record ``artifact`` for ``state`` and move to the next state."""
        self.artifacts[state.value] = artifact.model_dump(mode="json")
        self.last_completed_state = state
        self.current_state = state.next()
        self.failed_state = None
        self.last_error = None

    def fail(self, state: SagaState, error: BaseException) -> None:
        self.failed_state = state
        self.current_state = SagaState.FAILED
        if isinstance(error, BlobFerryError):
            self.last_error = error.to_dict()
        else:
            self.last_error = {"error": type(error).__name__, "message": str(error)}

    def count_attempt(self, state: SagaState, sub_step: Optional[str] = None) -> int:
        key = _attempt_key(state, sub_step)
        self.attempt_counts[key] = self.attempt_counts.get(key, 0) + 1
        return self.attempt_counts[key]

    def attempts(self, state: SagaState, sub_step: Optional[str] = None) -> int:
        return self.attempt_counts.get(_attempt_key(state, sub_step), 0)

    @property
    def resume_state(self) -> SagaState:
        """State a new run of this record starts from."""
        if self.current_state == SagaState.FAILED:
            if self.failed_state is not None:
                return self.failed_state
            if self.last_completed_state is None:
                return SAGA_ORDER[0]
            return self.last_completed_state.next()
        return self.current_state


class SagaStore(ABC):
    """Storage for saga records, keyed by request digest."""

    @abstractmethod
    async def get(self, digest: str) -> Optional[SagaRecord]:
        ...

    @abstractmethod
    async def save(self, record: SagaRecord) -> None:
        ...

    @abstractmethod
    async def delete(self, digest: str) -> None:
        ...

    @abstractmethod
    async def list_digests(self) -> List[str]:
        ...


class InMemorySagaStore(SagaStore):
    """Process-local store, for tests and single-run scripts."""

    def __init__(self) -> None:
        self._records: Dict[str, str] = {}

    async def get(self, digest: str) -> Optional[SagaRecord]:
        raw = self._records.get(digest)
        if raw is None:
            return None
        return SagaRecord.model_validate_json(raw)

    async def save(self, record: SagaRecord) -> None:
        record.updated_at = _now()
        # Stored serialized so callers never share a mutable record with the store
        self._records[record.digest] = record.model_dump_json()

    async def delete(self, digest: str) -> None:
        self._records.pop(digest, None)

    async def list_digests(self) -> List[str]:
        return sorted(self._records)


class JsonFileSagaStore(SagaStore):
    """
    One JSON file per digest in a directory.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so a crash mid-write leaves the previous
    record intact.

    Example:
        ```python
        store = JsonFileSagaStore("~/.blobferry/sagas")
        record = await store.get(request.digest())
        ```
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self._directory = Path(directory).expanduser()
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, digest: str) -> Path:
        if not digest or os.sep in digest or digest.startswith("."):
            raise ValueError(f"Invalid record digest: {digest!r}")
        return self._directory / f"{digest}.json"

    async def get(self, digest: str) -> Optional[SagaRecord]:
        path = self._path(digest)
        return await asyncio.to_thread(self._read, path)

    @staticmethod
    def _read(path: Path) -> Optional[SagaRecord]:
        if not path.exists():
            return None
        return SagaRecord.model_validate_json(path.read_text(encoding="utf-8"))

    async def save(self, record: SagaRecord) -> None:
        record.updated_at = _now()
        path = self._path(record.digest)
        payload = record.model_dump_json(indent=2)
        await asyncio.to_thread(self._write, path, payload)
        _logger.debug(
            "Saga record saved",
            extra={"digest": record.digest, "state": record.current_state.value},
        )

    def _write(self, path: Path, payload: str) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=self._directory, prefix=f".{path.stem}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def delete(self, digest: str) -> None:
        path = self._path(digest)
        await asyncio.to_thread(path.unlink, True)

    async def list_digests(self) -> List[str]:
        def scan() -> List[str]:
            return sorted(p.stem for p in self._directory.glob("*.json"))

        return await asyncio.to_thread(scan)

