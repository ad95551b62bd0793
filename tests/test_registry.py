from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import xml.etree.ElementTree as ET

import pytest

import gen


@pytest.mark.parametrize(
    ("xml", "expected"),
    [
        ("<proto>void <name>glEnd</name></proto>", gen.GLType(None, 0)),
        ("<proto><ptype>GLenum</ptype> <name>glGetError</name></proto>", gen.GLType("GLenum", 0)),
        (
            "<proto>const <ptype>GLubyte</ptype> *<name>glGetString</name></proto>",
            gen.GLType("GLubyte", 1),
        ),
        ("<param>const void *<name>pointer</name></param>", gen.GLType(None, 1)),
        (
            "<param>const <ptype>GLchar</ptype> *const*<name>string</name></param>",
            gen.GLType("GLchar", 2),
        ),
        (
            "<param>struct <ptype>_cl_context</ptype> *<name>context</name></param>",
            gen.GLType("struct _cl_context", 1),
        ),
    ],
)
def test_parse_type_reads_base_and_pointer_depth(xml: str, expected: gen.GLType) -> None:
    assert gen.parse_type(ET.fromstring(xml)) == expected


def test_parse_type_ignores_text_after_name() -> None:
    el = ET.fromstring("<param><ptype>GLfloat</ptype> <name>m</name>[16]</param>")

    assert gen.parse_type(el) == gen.GLType("GLfloat", 0)


def test_parse_registry_keeps_declaration_order_and_skips_valueless_enums(
    make_registry_root: Callable[[str], ET.Element],
) -> None:
    root = make_registry_root(
        """
        <enums>
            <enum value="0x2" name="GL_B"/>
            <enum value="0x1" name="GL_A"/>
            <enum name="GL_NO_VALUE"/>
        </enums>
        <enums>
            <enum value="0x3" name="GL_C"/>
        </enums>
        """
    )

    registry = gen.parse_registry(root)

    assert [(e.name, e.value) for e in registry.enums] == [
        ("GL_B", "0x2"),
        ("GL_A", "0x1"),
        ("GL_C", "0x3"),
    ]


def test_parse_registry_reads_command_prototypes(
    make_registry_root: Callable[[str], ET.Element],
) -> None:
    root = make_registry_root(
        """
        <commands>
            <command>
                <proto>void <name>glBindBuffer</name></proto>
                <param><ptype>GLenum</ptype> <name>target</name></param>
                <param><ptype>GLuint</ptype> <name>buffer</name></param>
            </command>
            <command>
                <proto>void *<name>glMapBuffer</name></proto>
                <param><ptype>GLenum</ptype> <name>target</name></param>
            </command>
        </commands>
        """
    )

    registry = gen.parse_registry(root)

    bind, map_buffer = registry.commands
    assert bind.name == "glBindBuffer"
    assert bind.return_type == gen.GLType(None, 0)
    assert [(p.name, p.gl_type) for p in bind.params] == [
        ("target", gen.GLType("GLenum")),
        ("buffer", gen.GLType("GLuint")),
    ]
    assert map_buffer.return_type == gen.GLType(None, 1)


def test_parse_registry_splits_feature_requires_and_removes_by_profile(
    make_registry_root: Callable[[str], ET.Element],
) -> None:
    root = make_registry_root(
        """
        <feature api="gl" name="GL_VERSION_3_2" number="3.2">
            <require profile="core">
                <type name="GLsync"/>
                <enum name="GL_SYNC_FLAGS"/>
                <command name="glFenceSync"/>
            </require>
            <require>
                <enum name="GL_DEPTH_CLAMP"/>
            </require>
            <remove profile="core">
                <command name="glBegin"/>
            </remove>
        </feature>
        """
    )

    (feature,) = gen.parse_registry(root).features

    assert feature.name == "GL_VERSION_3_2"
    assert feature.requires == (
        gen.Require("core", ("GL_SYNC_FLAGS",), ("glFenceSync",)),
        gen.Require(None, ("GL_DEPTH_CLAMP",), ()),
    )
    assert feature.removes == (gen.Remove("core", (), ("glBegin",)),)


def test_parse_registry_filters_features_and_extensions_by_api(
    make_registry_root: Callable[[str], ET.Element],
) -> None:
    root = make_registry_root(
        """
        <feature api="gl" name="GL_VERSION_1_0"/>
        <feature api="gles2" name="GL_ES_VERSION_2_0"/>
        <feature api="glsc2" name="GL_SC_VERSION_2_0"/>
        <extensions>
            <extension name="GL_ARB_a" supported="gl|glcore"/>
            <extension name="GL_OES_b" supported="gles2"/>
            <extension name="GL_NV_c" supported="disabled"/>
        </extensions>
        """
    )

    everything = gen.parse_registry(root)
    desktop = gen.parse_registry(root, frozenset({"gl"}))

    assert [f.name for f in everything.features] == [
        "GL_VERSION_1_0",
        "GL_ES_VERSION_2_0",
    ]
    assert [e.name for e in everything.extensions] == ["GL_ARB_a", "GL_OES_b"]
    assert [f.name for f in desktop.features] == ["GL_VERSION_1_0"]
    assert [e.name for e in desktop.extensions] == ["GL_ARB_a"]


def test_parse_registry_drops_profile_on_extension_requires(
    make_registry_root: Callable[[str], ET.Element],
) -> None:
    root = make_registry_root(
        """
        <extensions>
            <extension name="GL_ARB_a" supported="gl">
                <require profile="compatibility">
                    <enum name="GL_A_ARB"/>
                </require>
            </extension>
        </extensions>
        """
    )

    (extension,) = gen.parse_registry(root).extensions

    assert extension.requires == (gen.Require(None, ("GL_A_ARB",), ()),)


def test_load_registry_reads_fixture_file(fixture_gl_xml: Path) -> None:
    registry = gen.load_registry(fixture_gl_xml)

    assert len(registry.enums) == 8
    assert [c.name for c in registry.commands][:2] == ["glBegin", "glEnd"]
    assert [f.name for f in registry.features] == [
        "GL_VERSION_1_0",
        "GL_VERSION_2_0",
        "GL_VERSION_3_2",
        "GL_ES_VERSION_2_0",
    ]
    assert "GL_NV_unreleased" not in [e.name for e in registry.extensions]


def test_parse_registry_keeps_only_enum_variants_for_selected_apis(
    make_registry_root: Callable[[str], ET.Element],
) -> None:
    root = make_registry_root(
        """
        <enums>
            <enum value="0x8B8D" name="GL_ACTIVE_PROGRAM_EXT" api="gl"/>
            <enum value="0x8259" name="GL_ACTIVE_PROGRAM_EXT" api="gles2"/>
            <enum value="0x1" name="GL_SHARED"/>
        </enums>
        """
    )

    desktop = gen.parse_registry(root, frozenset({"gl"}))
    embedded = gen.parse_registry(root, frozenset({"gles2"}))

    assert [(e.name, e.value) for e in desktop.enums] == [
        ("GL_ACTIVE_PROGRAM_EXT", "0x8B8D"),
        ("GL_SHARED", "0x1"),
    ]
    assert [(e.name, e.value) for e in embedded.enums] == [
        ("GL_ACTIVE_PROGRAM_EXT", "0x8259"),
        ("GL_SHARED", "0x1"),
    ]
    table = gen.build_entity_table(desktop, reject_collisions=True)
    assert table.values[gen.EntityKey("constant", "GL_ACTIVE_PROGRAM_EXT")] == "0x8B8D"
    assert table.collisions == ()


def test_parse_registry_skips_edit_blocks_for_unselected_apis(
    make_registry_root: Callable[[str], ET.Element],
) -> None:
    root = make_registry_root(
        """
        <feature api="gl" name="GL_VERSION_3_2">
            <require><enum name="GL_A"/></require>
            <require api="gles2"><enum name="GL_B"/></require>
            <remove profile="core" api="gles2"><enum name="GL_A"/></remove>
        </feature>
        <extensions>
            <extension name="GL_EXT_separate_shader_objects" supported="gl|gles2">
                <require api="gl"><command name="glUseShaderProgramEXT"/></require>
                <require api="gles2"><command name="glUseProgramStagesEXT"/></require>
                <require><enum name="GL_ACTIVE_PROGRAM_EXT"/></require>
            </extension>
        </extensions>
        """
    )

    (feature,) = gen.parse_registry(root, frozenset({"gl"})).features
    (extension,) = gen.parse_registry(root, frozenset({"gl"})).extensions

    assert feature.requires == (gen.Require(None, ("GL_A",), ()),)
    assert feature.removes == ()
    assert extension.requires == (
        gen.Require(None, (), ("glUseShaderProgramEXT",)),
        gen.Require(None, ("GL_ACTIVE_PROGRAM_EXT",), ()),
    )
