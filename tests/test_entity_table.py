from collections.abc import Callable

import pytest

import gen


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("GL_TEXTURE_2D", "GL_TEXTURE_2D"),
        ("GLX_RGBA_BIT", "GL_RGBA_BIT"),
        ("WGL_NUMBER_PIXEL_FORMATS_ARB", "GL_NUMBER_PIXEL_FORMATS_ARB"),
        ("GL_FALSE", "GL_FALSE"),
    ],
)
def test_canonical_constant_name_replaces_family_tag(raw: str, expected: str) -> None:
    assert gen.canonical_constant_name(raw) == expected


def test_function_key_keeps_registry_name() -> None:
    assert gen.function_key("glGetError") == gen.EntityKey("function", "glGetError")


def test_build_entity_table_orders_constants_before_functions(
    make_registry: Callable[..., gen.Registry],
    make_command: Callable[..., gen.CommandDef],
) -> None:
    registry = make_registry(
        enums=(("GL_B", "0x2"), ("GL_A", "0x1")),
        commands=(make_command("glZ"), make_command("glA")),
    )

    table = gen.build_entity_table(registry)

    assert list(table.entities) == [
        gen.EntityKey("constant", "GL_B"),
        gen.EntityKey("constant", "GL_A"),
        gen.EntityKey("function", "glZ"),
        gen.EntityKey("function", "glA"),
    ]
    assert table.constant_count == 2
    assert table.function_count == 2
    assert table.collisions == ()


def test_build_entity_table_renders_literals_and_signatures(
    make_registry: Callable[..., gen.Registry],
    make_command: Callable[..., gen.CommandDef],
) -> None:
    registry = make_registry(
        enums=(("GL_LIMIT", "0x10"),),
        commands=(make_command("glEnable", (gen.GLType("GLenum"),)),),
    )

    table = gen.build_entity_table(registry)

    assert table.values[gen.EntityKey("constant", "GL_LIMIT")] == "0x10"
    assert table.values[gen.EntityKey("function", "glEnable")] == "GLenum -> m ()"
    assert table.entities[gen.EntityKey("constant", "GL_LIMIT")] == gen.Constant(
        "GL_LIMIT", "0x10"
    )


def test_build_entity_table_same_name_for_constant_and_function_does_not_collide(
    make_registry: Callable[..., gen.Registry],
    make_command: Callable[..., gen.CommandDef],
) -> None:
    registry = make_registry(
        enums=(("GL_X", "1"),),
        commands=(make_command("GL_X"),),
    )

    table = gen.build_entity_table(registry)

    assert len(table.entities) == 2
    assert table.collisions == ()


def test_build_entity_table_identical_redeclaration_is_not_a_collision(
    make_registry: Callable[..., gen.Registry],
) -> None:
    registry = make_registry(enums=(("GL_A", "0x1"), ("GL_A", "0x1")))

    table = gen.build_entity_table(registry)

    assert len(table.entities) == 1
    assert table.collisions == ()


def test_build_entity_table_records_collision_and_keeps_last_value(
    make_registry: Callable[..., gen.Registry],
) -> None:
    registry = make_registry(
        enums=(("GL_MODE", "0x1"), ("GL_OTHER", "0x9"), ("GLX_MODE", "0x2"))
    )

    table = gen.build_entity_table(registry)

    key = gen.EntityKey("constant", "GL_MODE")
    assert table.values[key] == "0x2"
    assert list(table.entities)[0] == key
    assert table.collisions == (
        gen.NameCollision(
            key=key,
            previous_name="GL_MODE",
            name="GLX_MODE",
            previous_value="0x1",
            value="0x2",
        ),
    )


def test_build_entity_table_redeclared_value_change_is_a_collision(
    make_registry: Callable[..., gen.Registry],
) -> None:
    registry = make_registry(enums=(("GL_A", "0x1"), ("GL_A", "0x3")))

    table = gen.build_entity_table(registry)

    assert len(table.collisions) == 1
    assert table.values[gen.EntityKey("constant", "GL_A")] == "0x3"


def test_build_entity_table_can_reject_collisions(
    make_registry: Callable[..., gen.Registry],
) -> None:
    registry = make_registry(enums=(("GL_MODE", "0x1"), ("GLX_MODE", "0x2")))

    with pytest.raises(gen.ResolutionError) as exc_info:
        gen.build_entity_table(registry, reject_collisions=True)

    assert exc_info.value.code == "NAME_COLLISION"
    assert "GLX_MODE" in exc_info.value.message
    assert "GL_MODE" in exc_info.value.message


def test_resolution_error_rejects_unknown_code() -> None:
    with pytest.raises(ValueError, match="Unknown resolution error code"):
        gen.ResolutionError("NOPE", "message")
