"""Tests for local asset containers and the catalog."""

from __future__ import annotations

from pathlib import Path

import pytest

from bgmpipeline.container import (
    ArchiveContainer,
    ExtractResult,
    ExtractStatus,
    build_catalog,
    iter_catalog,
    open_containers,
)

from fakes import FakeContainer, FakeImage, FakeSoundNode, corrupt_deflate_member, write_archive


class TestExtractResult:
    def test_success_with_bytes(self):
        res = ExtractResult.success(b"abc")
        assert res.ok
        assert res.data == b"abc"

    def test_success_with_no_bytes_is_empty(self):
        res = ExtractResult.success(b"")
        assert res.status is ExtractStatus.EMPTY
        assert not res.ok

    def test_failure_keeps_error(self):
        err = ValueError("bad node")
        res = ExtractResult.failure(err)
        assert res.status is ExtractStatus.ERROR
        assert res.error is err


class TestArchiveContainer:
    def test_images_and_nodes(self, tmp_path: Path):
        path = write_archive(tmp_path / "Sound.wz", {
            "Bgm00.img/FloralLife.mp3": b"audio-1",
            "Bgm00.img/Silence.mp3": b"",
            "Bgm01.img/Title.mp3": b"audio-2",
            "Effect.img/Click.mp3": b"click",
            "readme.txt": b"ignored",
        })
        container = ArchiveContainer(path)
        images = {img.name: img for img in container.images()}
        assert set(images) == {"Bgm00.img", "Bgm01.img", "Effect.img"}

        nodes = {n.name: n for n in images["Bgm00.img"].sound_nodes()}
        assert set(nodes) == {"FloralLife", "Silence"}
        assert nodes["FloralLife"].extract().data == b"audio-1"
        assert nodes["Silence"].extract().status is ExtractStatus.EMPTY

    def test_missing_archive_extract_is_error(self, tmp_path: Path):
        path = write_archive(tmp_path / "Sound.wz", {"Bgm00.img/A.mp3": b"x"})
        node = ArchiveContainer(path).images()[0].sound_nodes()[0]
        path.unlink()
        assert node.extract().status is ExtractStatus.ERROR

    def test_corrupt_deflate_member_is_error(self, tmp_path: Path):
        path = write_archive(tmp_path / "Sound.wz", {
            "Bgm00.img/Good.mp3": b"good-audio" * 64,
            "Bgm00.img/Bad.mp3": b"bad-audio" * 64,
        })
        corrupt_deflate_member(path, "Bgm00.img/Bad.mp3")
        nodes = {n.name: n for n in ArchiveContainer(path).images()[0].sound_nodes()}

        bad = nodes["Bad"].extract()
        assert bad.status is ExtractStatus.ERROR
        assert bad.error is not None
        assert nodes["Good"].extract().data == b"good-audio" * 64


class TestOpenContainers:
    def test_skips_missing_and_corrupt(self, tmp_path: Path):
        write_archive(tmp_path / "Sound.wz", {"Bgm00.img/A.mp3": b"x"})
        (tmp_path / "Sound2.wz").write_bytes(b"not a zip")
        opened = open_containers(tmp_path, ["Sound.wz", "Sound2.wz", "Sound3.wz"])
        assert [c.name for c in opened] == ["Sound.wz"]


class TestCatalog:
    def test_only_category_prefix_images(self):
        container = FakeContainer(image_list=[
            FakeImage("Bgm00.img", [FakeSoundNode("A")]),
            FakeImage("Effect.img", [FakeSoundNode("Click")]),
        ])
        ids = [e.task_id for e in iter_catalog([container], "Bgm")]
        assert ids == ["Bgm00/A"]

    @pytest.mark.asyncio
    async def test_first_container_wins(self):
        first = FakeContainer("Sound.wz", [FakeImage("Bgm00.img", [FakeSoundNode("A", b"one")])])
        second = FakeContainer("Sound2.wz", [FakeImage("Bgm00.img", [FakeSoundNode("A", b"two")])])
        catalog = await build_catalog([first, second])
        assert list(catalog) == ["Bgm00/A"]
        assert catalog["Bgm00/A"].node.extract().data == b"one"
        assert catalog["Bgm00/A"].group == "Bgm00"
