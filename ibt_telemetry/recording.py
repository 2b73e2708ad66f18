from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from .catalog import FieldCatalog, VariableDescriptor
from .config import NormalizerConfig
from .decoder import RecordView
from .errors import ClosedSource
from .samples import ByteSource, FileSource, RecordHeader, SampleAccessor
from .session_info import NormalizedSessionInfo, SessionDetails, SessionInfoNormalizer, session_details

logger = logging.getLogger(__name__)


class Recording:
    """A decoded telemetry recording.

    Owns the header, the variable catalog and the parsed session info. The
    byte source is borrowed: closing the recording drops the reference but
    never closes the caller's file.
    """

    def __init__(
        self,
        header: RecordHeader,
        catalog: FieldCatalog,
        session_info: NormalizedSessionInfo,
        source: ByteSource,
    ) -> None:
        self.header = header
        self.catalog = catalog
        self.normalized_session_info = session_info
        self._accessor: Optional[SampleAccessor] = SampleAccessor(source, header, catalog)

    @classmethod
    def from_source(
        cls,
        header: RecordHeader,
        catalog: Union[FieldCatalog, Iterable[VariableDescriptor]],
        raw_session_info: str,
        source: Any,
        config: Optional[NormalizerConfig] = None,
    ) -> "Recording":
        # Normalize first so a broken session block never yields a half-built recording.
        session_info = SessionInfoNormalizer(config).normalize(raw_session_info)
        if session_info.repairs:
            logger.info("Session info needed %d parser-driven repairs", len(session_info.repairs))
        if not isinstance(catalog, FieldCatalog):
            catalog = FieldCatalog(catalog)
        if not (hasattr(source, "read_at") and hasattr(source, "size_in_bytes")):
            source = FileSource(source)
        return cls(header, catalog, session_info, source)

    @property
    def metadata(self) -> Any:
        return self.normalized_session_info.data

    @property
    def closed(self) -> bool:
        return self._accessor is None

    def _samples(self) -> SampleAccessor:
        if self._accessor is None:
            raise ClosedSource("Recording has been closed")
        return self._accessor

    def close(self) -> None:
        self._accessor = None

    def __enter__(self) -> "Recording":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def sample_count(self) -> int:
        return self._samples().sample_count()

    def iter_samples(self) -> Iterator[RecordView]:
        accessor = self._samples()
        for sample in accessor.iter_samples():
            yield sample
            if self._accessor is None:
                raise ClosedSource("Recording was closed while streaming samples")

    def samples(self) -> List[RecordView]:
        return self._samples().samples()

    def sample_at(self, index: int) -> RecordView:
        return self._samples().sample_at(index)

    def session_details(self) -> SessionDetails:
        return session_details(self.metadata)

    def read_channels(self, names: Sequence[str]) -> Dict[str, List[object]]:
        descriptors = []
        for name in names:
            descriptor = self.catalog.lookup(name)
            if descriptor is None:
                raise KeyError(f"Unknown variable: {name}")
            descriptors.append(descriptor)
        data: Dict[str, List[object]] = {name: [] for name in names}
        for sample in self.iter_samples():
            for name, descriptor in zip(names, descriptors):
                data[name].append(sample.decode(descriptor))
        return data

    def read_channel(self, name: str) -> List[object]:
        return self.read_channels([name])[name]

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"{len(self.catalog)} variables"
        return f"Recording({state})"
