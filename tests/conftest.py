import argparse
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

import gen

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))


@pytest.fixture
def existing_paths(tmp_path: Path) -> dict[str, Path]:
    gl_xml = tmp_path / "gl.xml"
    gl_xml.write_text("<registry />\n", encoding="utf-8")

    output_dir = tmp_path / "out"
    return {
        "gl_xml": gl_xml,
        "output_dir": output_dir,
    }


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "gl_xml": existing_paths["gl_xml"],
            "output_dir": existing_paths["output_dir"],
            "api": None,
            "reject_collisions": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def make_registry_root() -> Callable[[str], ET.Element]:
    def _make_registry_root(inner_xml: str) -> ET.Element:
        return ET.fromstring(f"<registry>{inner_xml}</registry>")

    return _make_registry_root


@pytest.fixture
def make_command() -> Callable[..., gen.CommandDef]:
    def _make_command(
        name: str,
        params: tuple[gen.GLType, ...] = (),
        return_type: gen.GLType = gen.GLType(None),
    ) -> gen.CommandDef:
        return gen.CommandDef(
            name,
            return_type,
            [gen.CommandParam(f"p{index}", t) for index, t in enumerate(params)],
        )

    return _make_command


@pytest.fixture
def make_registry() -> Callable[..., gen.Registry]:
    def _make_registry(
        *,
        enums: tuple[tuple[str, str], ...] = (),
        commands: tuple[gen.CommandDef, ...] = (),
        features: tuple[gen.Feature, ...] = (),
        extensions: tuple[gen.Extension, ...] = (),
    ) -> gen.Registry:
        return gen.Registry(
            enums=tuple(gen.EnumDef(name, value) for name, value in enums),
            commands=tuple(commands),
            features=tuple(features),
            extensions=tuple(extensions),
        )

    return _make_registry


@pytest.fixture
def fixture_gl_xml() -> Path:
    return GENERATOR_DIR / "tests" / "fixtures" / "gl_minimal.xml"
