"""Unit tests for work units, dispatch results and artifact storage."""

import base64
from pathlib import Path

import httpx
import pytest

from switchyard.dispatch.artifacts import FileArtifactStore, artifact_stem
from switchyard.dispatch.models import DispatchResult, WorkUnit


class TestWorkUnit:
    """Tests for WorkUnit."""

    def test_effective_prompt(self):
        """Test that the enhanced prompt wins when present."""
        assert WorkUnit("a", "cat").effective_prompt == "cat"
        assert WorkUnit("a", "cat", enhanced_prompt="a fluffy cat").effective_prompt == (
            "a fluffy cat"
        )

    def test_from_dict_snake_case(self):
        """Test building from snake_case keys."""
        unit = WorkUnit.from_dict(
            {
                "id": 7,
                "prompt": "harbour",
                "enhanced_prompt": "a misty harbour at dawn",
                "suggested_size": "1792x1024",
                "position": 2,
                "metadata": {"section": "intro"},
            }
        )

        assert unit.id == "7"
        assert unit.suggested_size == "1792x1024"
        assert unit.position == 2
        assert unit.metadata == {"section": "intro"}

    def test_from_dict_camel_case(self):
        """Test building from camelCase keys."""
        unit = WorkUnit.from_dict(
            {
                "id": "x",
                "originalPrompt": "harbour",
                "enhancedPrompt": "a misty harbour",
                "suggestedStyle": "natural",
            }
        )

        assert unit.prompt == "harbour"
        assert unit.enhanced_prompt == "a misty harbour"
        assert unit.suggested_style == "natural"

    @pytest.mark.parametrize("data", [{"prompt": "cat"}, {"id": "a"}, {"id": "a", "prompt": ""}])
    def test_from_dict_requires_id_and_prompt(self, data):
        """Test that incomplete objects are rejected."""
        with pytest.raises(ValueError):
            WorkUnit.from_dict(data)


class TestDispatchResult:
    """Tests for DispatchResult."""

    def test_to_dict_omits_unit(self):
        """Test that the retained unit is not serialised."""
        result = DispatchResult(
            unit_id="a",
            success=True,
            provider="google",
            cost=0.0200001,
            unit=WorkUnit("a", "cat"),
        )

        data = result.to_dict()

        assert "unit" not in data
        assert data["cost"] == 0.02
        assert data["provider"] == "google"

    def test_unit_ignored_in_equality(self):
        """Test that results compare on outcome only."""
        a = DispatchResult(unit_id="a", success=False, unit=WorkUnit("a", "cat"))
        b = DispatchResult(unit_id="a", success=False)
        assert a == b


class TestFileArtifactStore:
    """Tests for FileArtifactStore."""

    @pytest.mark.asyncio
    async def test_data_uri(self, tmp_path):
        """Test that inline images are decoded to a file."""
        store = FileArtifactStore(tmp_path)
        ref = "data:image/png;base64," + base64.b64encode(b"\x89PNGdata").decode()

        path = await store.store(WorkUnit("unit/1", "cat"), ref)

        expected = tmp_path / f"{artifact_stem('unit/1')}.png"
        assert path == str(expected)
        assert expected.name.startswith("unit_1-")
        assert expected.read_bytes() == b"\x89PNGdata"
        await store.close()

    @pytest.mark.asyncio
    async def test_sanitised_ids_do_not_collide(self, tmp_path):
        """Test that ids differing only in unsafe characters get separate files."""
        store = FileArtifactStore(tmp_path)

        def ref(payload: bytes) -> str:
            return "data:image/png;base64," + base64.b64encode(payload).decode()

        first = await store.store(WorkUnit("a/b", "cat"), ref(b"first"))
        second = await store.store(WorkUnit("a_b", "dog"), ref(b"second"))

        assert first != second
        assert second == str(tmp_path / "a_b.png")
        assert Path(first).read_bytes() == b"first"
        assert Path(second).read_bytes() == b"second"
        await store.close()

    @pytest.mark.asyncio
    async def test_url_download(self, tmp_path):
        """Test that remote images are downloaded."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"jpegbytes", headers={"content-type": "image/jpeg"})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        store = FileArtifactStore(tmp_path / "out", http_client=http)

        path = await store.store(WorkUnit("b", "dog"), "https://img.example/b")

        assert path.startswith(str(tmp_path / "out" / "b."))
        assert (tmp_path / "out").is_dir()
        await store.close()

    @pytest.mark.asyncio
    async def test_download_error_raises(self, tmp_path):
        """Test that HTTP errors propagate to the pipeline."""
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        store = FileArtifactStore(tmp_path, http_client=http)

        with pytest.raises(httpx.HTTPStatusError):
            await store.store(WorkUnit("c", "bird"), "https://img.example/c")
        await store.close()
