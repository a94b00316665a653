"""Tests for the sample reader registry."""

from pathlib import Path

import pytest

from cytogate.events.table import EventTable
from cytogate.exceptions import FormatError
from cytogate.parsers.base import ReaderDetectionResult, SampleReader
from cytogate.parsers.delimited import DelimitedReader
from cytogate.parsers.fcs import FCSReader
from cytogate.parsers.registry import ReaderRegistry
from cytogate.parsers.types import ReaderMetadata


class DummyReader(SampleReader):
    """Reader that accepts ".dummy" files and returns an empty table."""

    def __init__(self, reader_id="dummy", confidence=0.8):
        self._id = reader_id
        self._confidence = confidence
        super().__init__()

    def get_metadata(self) -> ReaderMetadata:
        return ReaderMetadata(
            reader_id=self._id,
            reader_version="0.1.0",
            supported_formats=["Dummy"],
            extensions=[".dummy"],
            description="Test reader",
        )

    def detect(self, path: Path) -> ReaderDetectionResult:
        return ReaderDetectionResult(
            detected=self._extension_match(path), confidence=self._confidence
        )

    def read(self, path: Path) -> EventTable:
        return EventTable.from_columns({self._id: [1.0]})


class TestRegistration:
    def test_register_and_list(self):
        registry = ReaderRegistry()
        reader = DummyReader()
        registry.register(reader)
        assert registry.list_readers() == [reader]
        assert registry.get_reader("dummy") is reader

    def test_duplicate_id(self):
        registry = ReaderRegistry()
        registry.register(DummyReader())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(DummyReader())

    def test_unregister(self):
        registry = ReaderRegistry()
        registry.register(DummyReader())
        assert registry.unregister("dummy")
        assert not registry.unregister("dummy")
        assert registry.list_readers() == []

    def test_metadata(self):
        reader = DummyReader()
        assert reader.reader_id == "dummy"
        assert "dummy" in str(reader)


class TestDetection:
    def test_highest_confidence_wins(self, tmp_path):
        registry = ReaderRegistry()
        registry.register(DummyReader("low", confidence=0.3))
        registry.register(DummyReader("high", confidence=0.9))
        path = tmp_path / "a.dummy"
        path.write_text("x")
        assert registry.detect_reader(path).reader_id == "high"
        assert registry.read_sample(path).channel_names == ["high"]

    def test_no_reader(self, tmp_path):
        registry = ReaderRegistry()
        registry.register(DummyReader())
        with pytest.raises(FormatError, match="No reader"):
            registry.read_sample(tmp_path / "a.xyz")

    def test_fcs_header_detection(self, tmp_path):
        reader = FCSReader()
        fcs = tmp_path / "a.fcs"
        fcs.write_bytes(b"FCS3.1    ")
        renamed = tmp_path / "a.bin"
        renamed.write_bytes(b"FCS3.0    ")
        fake = tmp_path / "b.fcs"
        fake.write_bytes(b"not an fcs file")

        assert reader.detect(fcs).confidence == 1.0
        assert reader.detect(renamed).detected
        assert reader.detect(fake).confidence == 0.5
        assert not reader.detect(tmp_path / "missing.fcs").detected

    def test_delimited_detection(self, tmp_path):
        path = tmp_path / "a.tsv"
        path.write_text("FSC.A\n1\n")
        assert DelimitedReader().detect(path).detected
        assert not DelimitedReader().detect(tmp_path / "a.fcs").detected


class TestDelimitedReader:
    def test_read_csv(self, tmp_path):
        path = tmp_path / "a.csv"
        path.write_text("FSC.A, SSC.A\n1,2\n3,4\n\n")
        table = DelimitedReader().read(path)
        assert table.channel_names == ["FSC.A", "SSC.A"]
        assert table.n_events == 2
        assert table.keywords == {"fil": "a.csv"}

    def test_read_tsv(self, tmp_path):
        path = tmp_path / "a.tsv"
        path.write_text("FSC.A\tSSC.A\n1\t2\n")
        assert DelimitedReader().read(path).column("SSC.A")[0] == 2.0

    def test_header_only(self, tmp_path):
        path = tmp_path / "a.csv"
        path.write_text("FSC.A,SSC.A\n")
        assert DelimitedReader().read(path).n_events == 0

    @pytest.mark.parametrize(
        "content,message",
        [
            ("", "no header"),
            ("FSC.A,SSC.A\n1,2\n3\n", "line 3"),
            ("FSC.A\nabc\n", "non-numeric"),
            ("FSC.A,FSC.A\n1,2\n", "Duplicate"),
        ],
    )
    def test_malformed(self, tmp_path, content, message):
        path = tmp_path / "bad.csv"
        path.write_text(content)
        with pytest.raises(FormatError, match=message) as exc_info:
            DelimitedReader().read(path)
        assert exc_info.value.path == str(path)
