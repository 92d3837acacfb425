"""Tests for ExportTable."""

import pytest

from livemodules.errors import ExportError
from livemodules.exports import ExportTable


class TestExportTable:
    """Test the read-only export namespace."""

    def test_mapping_interface(self):
        """Test reads through the mapping protocol and attributes."""
        table = ExportTable("m", {"x": 1})

        assert table["x"] == 1
        assert table.get("missing") is None
        assert table.x == 1
        assert list(table) == ["x"]
        assert "x" in table

    def test_missing_attribute(self):
        """Test unknown names raise AttributeError."""
        with pytest.raises(AttributeError):
            ExportTable("m").nope

    def test_outside_writes_fail(self):
        """Test item and attribute writes are rejected."""
        table = ExportTable("m", {"x": 1})

        with pytest.raises(ExportError, match="cannot be changed from the outside"):
            table["x"] = 2
        with pytest.raises(ExportError):
            table.x = 2
        with pytest.raises(ExportError):
            del table["x"]
        with pytest.raises(TypeError):
            table["y"] = 3
        assert table.to_dict() == {"x": 1}

    def test_set_if_exists(self):
        """Test in-place updates only touch existing names."""
        table = ExportTable("m", {"x": 1})

        assert table.set_if_exists("x", 2) is True
        assert table.set_if_exists("y", 3) is False
        assert table.to_dict() == {"x": 2}

    def test_define_new(self):
        """Test adding names."""
        table = ExportTable("m")
        table.define_new("x", 1)

        assert table["x"] == 1
        with pytest.raises(KeyError):
            table.define_new("x", 2)

    def test_sealed_table_rejects_new_names(self):
        """Test sealing stops additions but not updates."""
        table = ExportTable("m", {"x": 1})
        table.seal()

        assert table.sealed
        with pytest.raises(ExportError):
            table.define_new("y", 2)
        assert table.set_if_exists("x", 5)

    def test_remove(self):
        """Test removal reports whether the name existed."""
        table = ExportTable("m", {"x": 1})

        assert table.remove("x") is True
        assert table.remove("x") is False
        assert len(table) == 0
