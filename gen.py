"""OpenGL bindings generator for Haskell.

Generates typed OpenGL bindings from the Khronos gl.xml registry.
Produces a `Graphics.OpenGL.*` module tree: one module per profile version
and per extension, a shared module for entities owned by several modules,
an FFI invoker module, and vendor gather modules.

Usage:
    python gen.py --gl-xml OpenGL-Registry/xml/gl.xml --output-dir generated
"""

import argparse
import xml.etree.ElementTree as ET
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

PROJECT_ROOT = Path(__file__).parent
DEFAULT_GL_XML = PROJECT_ROOT / "OpenGL-Registry" / "xml" / "gl.xml"
DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "generated"


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    gl_xml: Path
    output_dir: Path
    apis: frozenset[str]
    reject_collisions: bool = False


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "INVALID_API",
}
VALID_APIS = ("gl", "gles1", "gles2")


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_api_name(name: str) -> str:
    if name in VALID_APIS:
        return name
    raise ConfigError(
        "INVALID_API",
        f"Unsupported registry API: {name}",
        "Use one of: gl, gles1, gles2.",
    )


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate OpenGL bindings for Haskell")

    parser.add_argument("--gl-xml", type=Path, default=DEFAULT_GL_XML)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--api", action="append", default=None)
    parser.add_argument("--reject-collisions", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    apis = (
        frozenset(validate_api_name(name) for name in args.api)
        if args.api
        else frozenset(VALID_APIS)
    )
    gl_xml = validate_path_exists(
        args.gl_xml,
        "--gl-xml",
        "Clone OpenGL-Registry:\n"
        "  git clone https://github.com/KhronosGroup/OpenGL-Registry.git\n"
        "Or pass a custom path: --gl-xml /your/path/to/gl.xml",
    )
    return GenerateConfig(
        gl_xml=gl_xml,
        output_dir=args.output_dir,
        apis=apis,
        reject_collisions=bool(args.reject_collisions),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- Resolution errors ---=== #


VALID_RESOLUTION_CODES = {
    "UNKNOWN_REFERENCE",
    "UNKNOWN_PROFILE",
    "NAME_COLLISION",
    "MALFORMED_EXTENSION_NAME",
    "UNDECLARED_ANCESTOR",
    "INHERITANCE_CYCLE",
}


class ResolutionError(Exception):
    """Fatal inconsistency between the registry and the module layout.

    Raised while the module graph is being built. Every code aborts the run
    before any file is written.
    """

    def __init__(self, code: str, message: str):
        if code not in VALID_RESOLUTION_CODES:
            raise ValueError(f"Unknown resolution error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message


# ===--- Constants ---=== #

PUBLIC_CONSTANT_PREFIX = "GL_"

PROFILE_NAMESPACE = "Graphics.OpenGL.Profile"
EXTENSION_NAMESPACE = "Graphics.OpenGL.Extension"
SHARED_MODULE = "Graphics.OpenGL.Internal.Shared"
FFI_MODULE = "Graphics.OpenGL.Internal.FFI"

RUNTIME_IMPORTS = (
    "Graphics.OpenGL.Internal.Scope",
    "Graphics.OpenGL.Basic",
)
FFI_IMPORTS = (
    "Foreign.C.Types",
    "Foreign.Ptr",
    "Graphics.OpenGL.Types",
)

# Opaque types rendered as unit; only ever used behind a pointer.
VOID_TYPE_NAMES = {"GLvoid", "struct _cl_context", "struct _cl_event"}

# Registry tokens that are not valid Haskell module name components.
SANE_MODULE_NAMES = {"422Pixels": "FourTwoTwoPixels"}
SANE_PREFIXES = {"3DFX": "ThreeDFX"}

ENTITY_CONSTANT = "constant"
ENTITY_FUNCTION = "function"


# ===--- Data classes ---=== #


class GLType(NamedTuple):
    name: str | None
    pointer: int = 0


class EnumDef:
    def __init__(self, name: str, value: str):
        self.name = name
        self.value = value


class CommandParam:
    def __init__(self, name: str, gl_type: GLType):
        self.name = name
        self.gl_type = gl_type


class CommandDef:
    def __init__(self, name: str, return_type: GLType, params: list[CommandParam]):
        self.name = name
        self.return_type = return_type
        self.params = params


@dataclass(frozen=True)
class Require:
    profile: str | None
    constants: tuple[str, ...]
    functions: tuple[str, ...]


@dataclass(frozen=True)
class Remove:
    profile: str | None
    constants: tuple[str, ...]
    functions: tuple[str, ...]


@dataclass(frozen=True)
class Feature:
    name: str
    requires: tuple[Require, ...]
    removes: tuple[Remove, ...] = ()


@dataclass(frozen=True)
class Extension:
    name: str
    requires: tuple[Require, ...]


@dataclass(frozen=True)
class Registry:
    """Read-only view of one gl.xml parse, in registry declaration order."""

    enums: tuple[EnumDef, ...]
    commands: tuple[CommandDef, ...]
    features: tuple[Feature, ...]
    extensions: tuple[Extension, ...]


# ===--- XML parsing ---=== #


def parse_type(el: ET.Element) -> GLType:
    """Read the C type written before <name> in a <proto> or <param>."""
    parts = [el.text or ""]
    for child in el:
        if child.tag == "name":
            break
        parts.append(child.text or "")
        parts.append(child.tail or "")
    raw = "".join(parts)
    pointer = raw.count("*")
    words = [word for word in raw.replace("*", " ").split() if word != "const"]
    base = " ".join(words)
    if not base or base == "void":
        return GLType(None, pointer)
    return GLType(base, pointer)


def _supports_api(value: str, apis: frozenset[str]) -> bool:
    return any(token.strip() in apis for token in value.split("|"))


def _selected(el: ET.Element, apis: frozenset[str]) -> bool:
    """True when an element has no `api` attribute or names a selected API."""
    api = el.get("api")
    return api is None or _supports_api(api, apis)


def _edit_refs(block: ET.Element) -> tuple[tuple[str, ...], tuple[str, ...]]:
    constants = tuple(e.get("name", "") for e in block.findall("enum") if e.get("name"))
    functions = tuple(
        c.get("name", "") for c in block.findall("command") if c.get("name")
    )
    return constants, functions


def parse_registry(
    root: ET.Element, apis: frozenset[str] = frozenset(VALID_APIS)
) -> Registry:
    enums = []
    for val in root.findall("enums/enum"):
        name = val.get("name")
        value = val.get("value")
        if not name or value is None or not _selected(val, apis):
            continue
        enums.append(EnumDef(name, value))

    commands = []
    for cmd in root.findall("commands/command"):
        proto = cmd.find("proto")
        if proto is None:
            continue
        name_el = proto.find("name")
        if name_el is None or not name_el.text:
            continue
        params = []
        for p in cmd.findall("param"):
            param_name = p.find("name")
            name = param_name.text if param_name is not None else None
            params.append(CommandParam(name or "", parse_type(p)))
        commands.append(CommandDef(name_el.text, parse_type(proto), params))

    features = []
    for feat in root.findall("feature"):
        if feat.get("api", "") not in apis:
            continue
        requires = []
        for block in feat.findall("require"):
            if not _selected(block, apis):
                continue
            constants, functions = _edit_refs(block)
            requires.append(Require(block.get("profile"), constants, functions))
        removes = []
        for block in feat.findall("remove"):
            if not _selected(block, apis):
                continue
            constants, functions = _edit_refs(block)
            removes.append(Remove(block.get("profile"), constants, functions))
        features.append(Feature(feat.get("name", ""), tuple(requires), tuple(removes)))

    extensions = []
    for ext in root.findall("extensions/extension"):
        if not _supports_api(ext.get("supported", ""), apis):
            continue
        requires = []
        for block in ext.findall("require"):
            if not _selected(block, apis):
                continue
            constants, functions = _edit_refs(block)
            requires.append(Require(None, constants, functions))
        extensions.append(Extension(ext.get("name", ""), tuple(requires)))

    return Registry(
        enums=tuple(enums),
        commands=tuple(commands),
        features=tuple(features),
        extensions=tuple(extensions),
    )


def load_registry(path: Path, apis: frozenset[str] = frozenset(VALID_APIS)) -> Registry:
    tree = ET.parse(path)
    return parse_registry(tree.getroot(), apis)


# ===--- Entities ---=== #


class EntityKey(NamedTuple):
    kind: str
    name: str


@dataclass(frozen=True)
class Constant:
    name: str
    value: str

    @property
    def key(self) -> EntityKey:
        return EntityKey(ENTITY_CONSTANT, self.name)


@dataclass(frozen=True)
class Function:
    name: str
    param_types: tuple[GLType, ...]
    return_type: GLType

    @property
    def key(self) -> EntityKey:
        return EntityKey(ENTITY_FUNCTION, self.name)


Entity = Constant | Function


def function_from_command(cmd: CommandDef) -> Function:
    return Function(
        name=cmd.name,
        param_types=tuple(p.gl_type for p in cmd.params),
        return_type=cmd.return_type,
    )


# ===--- Signatures ---=== #


def _wrap(wrapper: str, text: str) -> str:
    if any(ch.isspace() for ch in text):
        return f"{wrapper} ({text})"
    return f"{wrapper} {text}"


def type_signature(gl_type: GLType) -> str:
    if gl_type.name is None or gl_type.name in VOID_TYPE_NAMES:
        text = "()"
    else:
        text = gl_type.name
    for _ in range(gl_type.pointer):
        text = _wrap("Ptr", text)
    return text


def derive_signature(function: Function, monad: str = "m") -> str:
    """Return the Haskell call signature of a function, e.g. `GLenum -> m ()`."""
    parts = [type_signature(t) for t in function.param_types]
    parts.append(_wrap(monad, type_signature(function.return_type)))
    return " -> ".join(parts)


def ffi_invoker_signature(function: Function) -> str:
    io_signature = derive_signature(function, "IO")
    return f"FunPtr ({io_signature}) -> {io_signature}"


def ffi_invoker_name(function: Function) -> str:
    """Name of the dynamic invoker shared by every function with this ABI.

    Built from the alphanumerics of each IO signature component, with unit
    spelled `V` and the `GL` type prefix dropped.
    """
    io_signature = derive_signature(function, "IO")
    parts = [
        "".join(ch for ch in part.replace("()", "V") if ch.isalnum())
        for part in io_signature.split(" -> ")
    ]
    return "ffi" + "".join(parts).replace("GL", "")


# ===--- Entity table ---=== #


@dataclass(frozen=True)
class NameCollision:
    """Two registry declarations that canonicalize to the same entity.

    Attributes:
        key: Canonical entity identity both declarations map to.
        previous_name: Raw registry name of the declaration that was replaced.
        name: Raw registry name of the declaration that was kept.
        previous_value: Rendered value that was discarded.
        value: Rendered value that was kept.
    """

    key: EntityKey
    previous_name: str
    name: str
    previous_value: str
    value: str


@dataclass(frozen=True)
class EntityTable:
    """Canonical entities and their rendered values, in declaration order.

    Enum declarations come first, then commands, matching gl.xml document
    order. A replaced declaration keeps the table position of the first one.

    Attributes:
        entities: Canonical key -> Constant or Function.
        values: Canonical key -> rendered value (literal or call signature).
        collisions: Every replacement made while building the table.
    """

    entities: dict[EntityKey, Entity]
    values: dict[EntityKey, str]
    collisions: tuple[NameCollision, ...] = ()

    @property
    def constant_count(self) -> int:
        return sum(1 for key in self.entities if key.kind == ENTITY_CONSTANT)

    @property
    def function_count(self) -> int:
        return sum(1 for key in self.entities if key.kind == ENTITY_FUNCTION)


def canonical_constant_name(raw: str) -> str:
    """Replace the family tag (first `_` field) with the public GL_ prefix."""
    return PUBLIC_CONSTANT_PREFIX + "_".join(raw.split("_")[1:])


def constant_key(raw: str) -> EntityKey:
    return EntityKey(ENTITY_CONSTANT, canonical_constant_name(raw))


def function_key(raw: str) -> EntityKey:
    return EntityKey(ENTITY_FUNCTION, raw)


def build_entity_table(
    registry: Registry, reject_collisions: bool = False
) -> EntityTable:
    """Canonicalize every enum and command and fix its rendered value.

    A later declaration mapping to an existing key replaces it (last write
    wins). Replacements from a different raw name or with a different value
    are recorded as NameCollision entries; identical redeclarations are not.

    Args:
        registry: Parsed registry.
        reject_collisions: Raise on the first collision instead of recording it.

    Returns:
        EntityTable with empty ownership implied for every entity.

    Raises:
        ResolutionError: NAME_COLLISION when reject_collisions is set and a
            collision occurs.
    """
    entities: dict[EntityKey, Entity] = {}
    values: dict[EntityKey, str] = {}
    raw_names: dict[EntityKey, str] = {}
    collisions: list[NameCollision] = []

    def _insert(key: EntityKey, raw_name: str, entity: Entity, value: str) -> None:
        if key in entities and (raw_names[key] != raw_name or values[key] != value):
            collision = NameCollision(
                key=key,
                previous_name=raw_names[key],
                name=raw_name,
                previous_value=values[key],
                value=value,
            )
            if reject_collisions:
                raise ResolutionError(
                    "NAME_COLLISION",
                    f"{raw_name} collides with {collision.previous_name} "
                    f"as {key.kind} {key.name}",
                )
            collisions.append(collision)
        entities[key] = entity
        values[key] = value
        raw_names[key] = raw_name

    for enum in registry.enums:
        key = constant_key(enum.name)
        _insert(key, enum.name, Constant(key.name, enum.value), enum.value)

    for cmd in registry.commands:
        function = function_from_command(cmd)
        _insert(function.key, cmd.name, function, derive_signature(function))

    return EntityTable(
        entities=entities,
        values=values,
        collisions=tuple(collisions),
    )


# ===--- Profile routing ---=== #


class ProfileRoute(NamedTuple):
    module: str
    alias: str | None = None


def profile_module(suffix: str) -> str:
    return f"{PROFILE_NAMESPACE}.{suffix}"


STANDARD_VERSIONS: tuple[tuple[str, str], ...] = (
    ("GL_VERSION_1_0", "10"),
    ("GL_VERSION_1_1", "11"),
    ("GL_VERSION_1_2", "12"),
    ("GL_VERSION_1_3", "13"),
    ("GL_VERSION_1_4", "14"),
    ("GL_VERSION_1_5", "15"),
    ("GL_VERSION_2_0", "20"),
    ("GL_VERSION_2_1", "21"),
    ("GL_VERSION_3_0", "30"),
    ("GL_VERSION_3_1", "31"),
)
SPLIT_VERSIONS: tuple[tuple[str, str], ...] = (
    ("GL_VERSION_3_2", "32"),
    ("GL_VERSION_3_3", "33"),
    ("GL_VERSION_4_0", "40"),
    ("GL_VERSION_4_1", "41"),
    ("GL_VERSION_4_2", "42"),
    ("GL_VERSION_4_3", "43"),
    ("GL_VERSION_4_4", "44"),
    ("GL_VERSION_4_5", "45"),
    ("GL_VERSION_4_6", "46"),
)
EMBEDDED_CM_VERSION = "GL_VERSION_ES_CM_1_0"
EMBEDDED_VERSIONS: tuple[tuple[str, str], ...] = (
    ("GL_ES_VERSION_2_0", "20"),
    ("GL_ES_VERSION_3_0", "30"),
    ("GL_ES_VERSION_3_1", "31"),
    ("GL_ES_VERSION_3_2", "32"),
)


def _build_profile_routes() -> dict[tuple[str, str | None], ProfileRoute]:
    routes: dict[tuple[str, str | None], ProfileRoute] = {}
    for feature, suffix in STANDARD_VERSIONS:
        routes[(feature, None)] = ProfileRoute(profile_module(f"Standard{suffix}"))
    for feature, suffix in SPLIT_VERSIONS:
        core = profile_module(f"Core{suffix}")
        compatibility = profile_module(f"Compatibility{suffix}")
        routes[(feature, None)] = ProfileRoute(core)
        routes[(feature, "core")] = ProfileRoute(core, compatibility)
        routes[(feature, "compatibility")] = ProfileRoute(compatibility)
    routes[(EMBEDDED_CM_VERSION, None)] = ProfileRoute(profile_module("EmbeddedLite10"))
    routes[(EMBEDDED_CM_VERSION, "common")] = ProfileRoute(
        profile_module("EmbeddedCommon10")
    )
    for feature, suffix in EMBEDDED_VERSIONS:
        routes[(feature, None)] = ProfileRoute(profile_module(f"Embedded{suffix}"))
    return routes


PROFILE_ROUTES = _build_profile_routes()
"""Every (feature, profile) pair the generator knows how to place.

A `core` require or remove carries the compatibility module of the same
version as its alias: entities removed from core stay reachable there."""

PROFILE_MODULES: tuple[str, ...] = tuple(
    dict.fromkeys(
        name
        for route in PROFILE_ROUTES.values()
        for name in (route.module, route.alias)
        if name is not None
    )
)

STANDARD_PROFILE_MODULES = frozenset(
    profile_module(f"Standard{suffix}") for _, suffix in STANDARD_VERSIONS
)
BASELINE_PROFILE_MODULE = profile_module("Core32")


def profile_route(feature: str, profile: str | None) -> ProfileRoute:
    try:
        return PROFILE_ROUTES[(feature, profile)]
    except KeyError as err:
        raise ResolutionError(
            "UNKNOWN_PROFILE",
            f"No module for feature {feature} with profile {profile or '<none>'}",
        ) from err


def require_targets(module: str) -> tuple[str, ...]:
    """Return every module that receives entities required into `module`.

    Standard-track versions predate the profile split. Their requires also
    land in the baseline core module so the legacy surface stays visible from
    the profiled namespace without being declared again.
    """
    if module in STANDARD_PROFILE_MODULES:
        return (module, BASELINE_PROFILE_MODULE)
    return (module,)


# ===--- Profile inheritance ---=== #

_INHERITANCE_BY_SUFFIX: dict[str, tuple[str, ...]] = {
    "Standard11": ("Standard10",),
    "Standard12": ("Standard11",),
    "Standard13": ("Standard12",),
    "Standard14": ("Standard13",),
    "Standard15": ("Standard14",),
    "Standard20": ("Standard15",),
    "Standard21": ("Standard20",),
    "Standard30": ("Standard21",),
    "Standard31": ("Standard30",),
    "Compatibility32": ("Core32",),
    "Core33": ("Core32",),
    "Compatibility33": ("Compatibility32", "Core33"),
    "Core40": ("Core33",),
    "Compatibility40": ("Compatibility33", "Core40"),
    "Core41": ("Core40",),
    "Compatibility41": ("Compatibility40", "Core41"),
    "Core42": ("Core41",),
    "Compatibility42": ("Compatibility41", "Core42"),
    "Core43": ("Core42",),
    "Compatibility43": ("Compatibility42", "Core43"),
    "Core44": ("Core43",),
    "Compatibility44": ("Compatibility43", "Core44"),
    "Core45": ("Core44",),
    "Compatibility45": ("Compatibility44", "Core45"),
    "Core46": ("Core45",),
    "Compatibility46": ("Compatibility45", "Core46"),
    "EmbeddedCommon10": ("EmbeddedLite10",),
    "Embedded30": ("Embedded20",),
    "Embedded31": ("Embedded30",),
    "Embedded32": ("Embedded31",),
}

PROFILE_INHERITANCE: dict[str, tuple[str, ...]] = {
    profile_module(name): tuple(profile_module(parent) for parent in parents)
    for name, parents in _INHERITANCE_BY_SUFFIX.items()
}
"""Module -> modules it re-exports instead of repeating their entities."""


def ancestors_of(module: str) -> tuple[str, ...]:
    return PROFILE_INHERITANCE.get(module, ())


def validate_inheritance(
    declared: Iterable[str],
    inheritance: dict[str, tuple[str, ...]] = PROFILE_INHERITANCE,
) -> None:
    """Check that an inheritance table is a DAG over declared modules.

    Args:
        declared: Every module id that will exist in the output.
        inheritance: Module -> ancestor ids table to check.

    Raises:
        ResolutionError: UNDECLARED_ANCESTOR if a table entry or one of its
            ancestors is not declared; INHERITANCE_CYCLE if ancestors loop.
    """
    declared_set = set(declared)
    for module, ancestors in inheritance.items():
        for name in (module, *ancestors):
            if name not in declared_set:
                raise ResolutionError(
                    "UNDECLARED_ANCESTOR",
                    f"Inheritance entry {module} refers to undeclared module {name}",
                )

    in_degree = {module: 0 for module in declared_set}
    dependents = defaultdict(list)
    for module, ancestors in inheritance.items():
        for ancestor in ancestors:
            dependents[ancestor].append(module)
            in_degree[module] += 1

    queue = [module for module, degree in in_degree.items() if degree == 0]
    visited = 0
    while queue:
        node = queue.pop()
        visited += 1
        for dependent in dependents[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if visited != len(in_degree):
        remaining = sorted(m for m, degree in in_degree.items() if degree > 0)
        raise ResolutionError(
            "INHERITANCE_CYCLE",
            f"Inheritance cycle through: {', '.join(remaining)}",
        )


# ===--- Ownership resolution ---=== #


def sane_prefix(prefix: str) -> str:
    return SANE_PREFIXES.get(prefix, prefix)


def sane_module(name: str) -> str:
    return SANE_MODULE_NAMES.get(name, name)


def _camel_case(text: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in text.split("_"))


def _extension_fields(name: str) -> list[str]:
    fields = name.split("_")
    if len(fields) < 3 or not fields[1]:
        raise ResolutionError(
            "MALFORMED_EXTENSION_NAME",
            f"Extension name {name!r} does not match GL_<VENDOR>_<name>",
        )
    return fields


def extension_module_name(name: str) -> str:
    """Map GL_ARB_texture_env_add to Graphics.OpenGL.Extension.ARB.TextureEnvAdd."""
    fields = _extension_fields(name)
    prefix = sane_prefix(fields[1])
    rest = sane_module(_camel_case("_".join(fields[2:])))
    return f"{EXTENSION_NAMESPACE}.{prefix}.{rest}"


def extension_prefix(name: str) -> str:
    return _extension_fields(name)[1]


@dataclass(frozen=True)
class Ownership:
    value: str
    owners: frozenset[str] = frozenset()


class OwnershipMap:
    """Owning-module sets for every entity of one EntityTable.

    Owned by a single resolve_ownership pass and edited sequentially. Edits
    replace the owner set only; the rendered value is copied through
    unchanged.
    """

    def __init__(self, table: EntityTable):
        self._entries: dict[EntityKey, Ownership] = {
            key: Ownership(value) for key, value in table.values.items()
        }

    def _get(self, key: EntityKey, origin: str) -> Ownership:
        try:
            return self._entries[key]
        except KeyError as err:
            raise ResolutionError(
                "UNKNOWN_REFERENCE",
                f"{origin or 'Registry'} references unknown {key.kind} {key.name}",
            ) from err

    def add_owner(self, key: EntityKey, module: str, origin: str = "") -> None:
        entry = self._get(key, origin)
        self._entries[key] = Ownership(entry.value, entry.owners | {module})

    def remove_owner(self, key: EntityKey, module: str, origin: str = "") -> None:
        entry = self._get(key, origin)
        self._entries[key] = Ownership(entry.value, entry.owners - {module})

    def owners(self, key: EntityKey) -> frozenset[str]:
        return self._get(key, "").owners

    def value(self, key: EntityKey) -> str:
        return self._get(key, "").value


def edit_keys(block: Require | Remove) -> list[EntityKey]:
    keys = [constant_key(name) for name in block.constants]
    keys.extend(function_key(name) for name in block.functions)
    return keys


def apply_require(
    ownership: OwnershipMap,
    modules: tuple[str, ...],
    block: Require,
    origin: str = "",
) -> None:
    for key in edit_keys(block):
        for module in modules:
            ownership.add_owner(key, module, origin)


def apply_remove(
    ownership: OwnershipMap,
    route: ProfileRoute,
    block: Remove,
    origin: str = "",
) -> None:
    for key in edit_keys(block):
        ownership.remove_owner(key, route.module, origin)
        if route.alias is not None:
            ownership.add_owner(key, route.alias, origin)


def resolve_ownership(registry: Registry, table: EntityTable) -> OwnershipMap:
    """Apply every extension and feature edit to a fresh ownership map.

    Extensions are applied first, then features, each in registry order.
    Within a feature every require is applied before any remove.

    Args:
        registry: Parsed registry supplying the ordered edits.
        table: Entity table built from the same registry.

    Returns:
        OwnershipMap holding the final owner set of every entity.

    Raises:
        ResolutionError: UNKNOWN_REFERENCE for an edit naming an entity the
            table does not hold, UNKNOWN_PROFILE for an unrouted feature or
            profile, MALFORMED_EXTENSION_NAME for an unparseable extension.
    """
    ownership = OwnershipMap(table)

    for ext in registry.extensions:
        module = extension_module_name(ext.name)
        for req in ext.requires:
            apply_require(ownership, (module,), req, ext.name)

    for feature in registry.features:
        for req in feature.requires:
            route = profile_route(feature.name, req.profile)
            apply_require(ownership, require_targets(route.module), req, feature.name)
        for rm in feature.removes:
            route = profile_route(feature.name, rm.profile)
            apply_remove(ownership, route, rm, feature.name)

    return ownership


# ===--- Module partitioning ---=== #


@dataclass(frozen=True)
class ModuleEntry:
    shared: bool
    entity: Entity
    value: str

    @property
    def key(self) -> EntityKey:
        return self.entity.key


@dataclass(frozen=True)
class Module:
    """One output module: owned entries plus re-exported ancestors.

    Attributes:
        name: Fully qualified module id.
        entries: Owned entries in entity table order. Shared entries are
            exported here but rendered only in the shared module.
        ancestors: Modules re-exported wholesale, from PROFILE_INHERITANCE.
    """

    name: str
    entries: tuple[ModuleEntry, ...]
    ancestors: tuple[str, ...] = ()

    @property
    def depends_on_shared(self) -> bool:
        return any(entry.shared for entry in self.entries)

    @property
    def local_entries(self) -> tuple[ModuleEntry, ...]:
        return tuple(entry for entry in self.entries if not entry.shared)


def known_modules(registry: Registry) -> tuple[str, ...]:
    names = [extension_module_name(ext.name) for ext in registry.extensions]
    names.extend(PROFILE_MODULES)
    return tuple(dict.fromkeys(names))


def partition_modules(
    table: EntityTable,
    ownership: OwnershipMap,
    known: Iterable[str],
) -> dict[str, Module]:
    """Group entities by owning module.

    Every known module exists in the result even when it owns nothing. An
    entry is flagged shared when its entity has more than one owner.

    Args:
        table: Entity table; its order fixes the order of every entry list.
        ownership: Final ownership map from resolve_ownership.
        known: Module ids to pre-register, in output order.

    Returns:
        Ordered module id -> Module map with ancestors attached.
    """
    grouped: dict[str, list[ModuleEntry]] = {name: [] for name in known}
    for key, entity in table.entities.items():
        owners = ownership.owners(key)
        entry = ModuleEntry(len(owners) > 1, entity, ownership.value(key))
        for module in sorted(owners):
            grouped.setdefault(module, []).append(entry)

    return {
        name: Module(name, tuple(entries), ancestors_of(name))
        for name, entries in grouped.items()
    }


def extract_shared_module(modules: Iterable[Module]) -> Module:
    seen: dict[EntityKey, ModuleEntry] = {}
    for module in modules:
        for entry in module.entries:
            if entry.shared and entry.key not in seen:
                seen[entry.key] = entry
    return Module(SHARED_MODULE, tuple(seen.values()))


# ===--- Extension gathering ---=== #


@dataclass(frozen=True)
class GatherModule:
    """Module whose only content is re-exports of other modules."""

    name: str
    title: str
    members: tuple[str, ...]


def group_extensions(
    extension_names: Iterable[str],
) -> tuple[tuple[GatherModule, ...], GatherModule]:
    """Build one gather module per vendor prefix plus the top-level gather.

    Args:
        extension_names: Registry extension names, e.g. GL_ARB_multitexture.

    Returns:
        Tuple of (prefix gathers sorted by prefix, top-level gather). Members
        of each prefix gather are sorted by module id.
    """
    groups: dict[str, set[str]] = defaultdict(set)
    for name in extension_names:
        groups[extension_prefix(name)].add(extension_module_name(name))

    gathers = tuple(
        GatherModule(
            name=f"{EXTENSION_NAMESPACE}.{sane_prefix(prefix)}",
            title=f"{prefix} Extensions",
            members=tuple(sorted(groups[prefix])),
        )
        for prefix in sorted(groups)
    )
    top = GatherModule(
        name=EXTENSION_NAMESPACE,
        title="Extensions",
        members=tuple(gather.name for gather in gathers),
    )
    return gathers, top


# ===--- Module graph ---=== #


@dataclass(frozen=True)
class ModuleGraph:
    """Everything the writer needs, built before any file is touched.

    Attributes:
        table: Entity table the graph was resolved from.
        modules: Profile and extension modules in output order.
        shared: The single module rendering every multi-owned entity.
        gathers: Vendor prefix gather modules, sorted by prefix.
        top_gather: Gather module re-exporting every prefix gather.
        extension_modules: Extension module id -> registry extension name.
    """

    table: EntityTable
    modules: dict[str, Module]
    shared: Module
    gathers: tuple[GatherModule, ...]
    top_gather: GatherModule
    extension_modules: dict[str, str]


def build_module_graph(
    registry: Registry, reject_collisions: bool = False
) -> ModuleGraph:
    table = build_entity_table(registry, reject_collisions)
    ownership = resolve_ownership(registry, table)

    known = known_modules(registry)
    validate_inheritance(known)
    modules = partition_modules(table, ownership, known)
    shared = extract_shared_module(modules.values())

    extension_names = [ext.name for ext in registry.extensions]
    gathers, top_gather = group_extensions(extension_names)

    return ModuleGraph(
        table=table,
        modules=modules,
        shared=shared,
        gathers=gathers,
        top_gather=top_gather,
        extension_modules={extension_module_name(n): n for n in extension_names},
    )


# ===--- Module writer ---=== #


@dataclass(frozen=True)
class WriteConfig:
    """Shared generation metadata embedded in every file header.

    Attributes:
        source_label: Registry source shown in headers, e.g. "gl.xml".
    """

    source_label: str


@dataclass(frozen=True)
class ExportSection:
    """One titled group in a module export list.

    Renders as a Haddock section heading followed by one line per name.
    """

    title: str
    names: tuple[str, ...]


@dataclass(frozen=True)
class ModuleSpec:
    """Complete input for one generated .hs module file.

    Attributes:
        module_name: Fully qualified module id.
        sections: Export list sections. None omits the export list so the
            module exports everything it defines.
        imports: Imported module ids, in declaration order.
        content_lines: Body source lines without header, pragmas or imports.
        pragmas: LANGUAGE extensions enabled for the module.
    """

    module_name: str
    sections: tuple[ExportSection, ...] | None
    imports: tuple[str, ...]
    content_lines: tuple[str, ...]
    pragmas: tuple[str, ...] = ()

    @property
    def relative_path(self) -> Path:
        parts = self.module_name.split(".")
        return Path(*parts[:-1], f"{parts[-1]}.hs")


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing a single generated file.

    Attributes:
        filename: Path of the file relative to the output directory.
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


@dataclass(frozen=True)
class PackageWriteResult:
    output_dir: Path
    files: tuple[FileWriteResult, ...]

    @property
    def total_lines(self) -> int:
        """Sum of line_count across all written files."""
        return sum(f.line_count for f in self.files)


_HEADER_BORDER: str = "-- x-------------------------------------------x --"


def format_file_header(config: WriteConfig, module_name: str) -> list[str]:
    """Return comment-block lines for a generated module file header.

    Output format:
        -- x-------------------------------------------x --
        -- OpenGL bindings for Haskell
        -- Generated by opengl-bindings-gen
        -- Source: gl.xml
        -- Module: Graphics.OpenGL.Profile.Core32
        -- x-------------------------------------------x --

    Raises:
        ValueError: If config.source_label is empty.
    """
    if not config.source_label:
        raise ValueError("source_label must not be empty")
    return [
        _HEADER_BORDER,
        "-- OpenGL bindings for Haskell",
        "-- Generated by opengl-bindings-gen",
        f"-- Source: {config.source_label}",
        f"-- Module: {module_name}",
        _HEADER_BORDER,
    ]


def format_export_list(
    module_name: str, sections: tuple[ExportSection, ...] | None
) -> list[str]:
    if sections is None:
        return [f"module {module_name} where"]
    if not any(section.names for section in sections):
        return [f"module {module_name} () where"]

    lines = [f"module {module_name} ("]
    for section in sections:
        lines.append(f"    -- * {section.title}")
        for name in section.names:
            lines.append(f"    {name},")
    lines.append("  ) where")
    return lines


def assemble_module_source(config: WriteConfig, spec: ModuleSpec) -> str:
    """Assemble a complete .hs module source string from a ModuleSpec.

    File structure:
        <pragmas>                   <- one LANGUAGE pragma per entry, if any
        <header_comment_block>
                                    <- blank line
        <module header + exports>
                                    <- blank line (only with imports)
        <import lines>
                                    <- blank line (only with content)
        <content_lines>
                                    <- trailing newline

    Raises:
        ValueError: If spec.module_name is empty or propagated from
            format_file_header.
    """
    if not spec.module_name:
        raise ValueError("spec.module_name must not be empty")

    parts: list[str] = [f"{{-# LANGUAGE {pragma} #-}}" for pragma in spec.pragmas]
    parts.extend(format_file_header(config, spec.module_name))
    parts.append("")
    parts.extend(format_export_list(spec.module_name, spec.sections))

    if spec.imports:
        parts.append("")
        parts.extend(f"import {name}" for name in spec.imports)

    if spec.content_lines:
        parts.append("")
        parts.extend(spec.content_lines)

    return "\n".join(parts) + "\n"


def write_module(
    output_dir: Path, config: WriteConfig, spec: ModuleSpec
) -> FileWriteResult:
    """Write a single generated module under output_dir.

    Creates the module's package directories before writing.

    Raises:
        ValueError: Propagated from assemble_module_source on invalid spec.
        OSError: Propagated directly if the filesystem write fails.
    """
    content = assemble_module_source(config, spec)
    file_path = Path(output_dir) / spec.relative_path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(content, encoding="utf-8")
    resolved = file_path.resolve()
    return FileWriteResult(
        filename=spec.relative_path.as_posix(),
        path=resolved,
        line_count=content.count("\n"),
        byte_count=len(content.encode("utf-8")),
    )


def write_package(
    output_dir: Path,
    config: WriteConfig,
    module_specs: tuple[ModuleSpec, ...],
) -> PackageWriteResult:
    """Write every module spec in provided order.

    Propagates any OSError immediately without rollback.
    """
    files = tuple(write_module(output_dir, config, spec) for spec in module_specs)
    return PackageWriteResult(output_dir=Path(output_dir), files=files)


# ===--- Module rendering ---=== #


def entity_export_name(entity: Entity) -> str:
    if isinstance(entity, Constant):
        return f"pattern {entity.name}"
    return entity.name


def extension_check_name(extension: str) -> str:
    return "gl_" + "_".join(extension.split("_")[1:])


def render_constant(constant: Constant, value: str) -> list[str]:
    return [
        f"pattern {constant.name} :: GLenum",
        f"pattern {constant.name} = {value}",
    ]


def render_function(function: Function, value: str) -> list[str]:
    name = function.name
    fun_ptr = f"{name}FunPtr"
    args = "".join(f" v{index}" for index in range(len(function.param_types)))
    return [
        f"{name} :: MonadIO m => {value}",
        f"{name}{args} = liftIO ({ffi_invoker_name(function)} {fun_ptr}{args})",
        "",
        f"{fun_ptr} :: FunPtr ({derive_signature(function, 'IO')})",
        f'{fun_ptr} = unsafePerformIO (getProcAddress "{name}")',
        f"{{-# NOINLINE {fun_ptr} #-}}",
    ]


def render_entry(entry: ModuleEntry) -> list[str]:
    if isinstance(entry.entity, Constant):
        return render_constant(entry.entity, entry.value)
    return render_function(entry.entity, entry.value)


def render_extension_check(extension: str) -> list[str]:
    name = extension_check_name(extension)
    return [
        f"{name} :: (Monad m, MonadReader e m, HasScope e) => m Bool",
        f'{name} = extGL "{extension}"',
    ]


def _join_blocks(blocks: Iterable[list[str]]) -> tuple[str, ...]:
    lines: list[str] = []
    for block in blocks:
        if lines:
            lines.append("")
        lines.extend(block)
    return tuple(lines)


def _has_functions(entries: Iterable[ModuleEntry]) -> bool:
    return any(isinstance(entry.entity, Function) for entry in entries)


def build_owner_module_spec(module: Module, extension: str | None = None) -> ModuleSpec:
    """Spec for a profile or extension module.

    Exports ancestors and every owned entry, imports the shared module when
    any entry is shared, and renders only the entries it owns alone.
    """
    names = [f"module {ancestor}" for ancestor in module.ancestors]
    names.extend(entity_export_name(entry.entity) for entry in module.entries)

    sections: list[ExportSection] = []
    blocks: list[list[str]] = []
    if extension is not None:
        check = extension_check_name(extension)
        sections.append(ExportSection("Extension Support", (check,)))
        sections.append(ExportSection(extension, tuple(names)))
        blocks.append(render_extension_check(extension))
    else:
        sections.append(ExportSection(module.name, tuple(names)))
    blocks.extend(render_entry(entry) for entry in module.local_entries)

    imports = list(RUNTIME_IMPORTS)
    if module.depends_on_shared:
        imports.append(SHARED_MODULE)
    if _has_functions(module.local_entries):
        imports.append(FFI_MODULE)
    imports.extend(module.ancestors)

    return ModuleSpec(
        module_name=module.name,
        sections=tuple(sections),
        imports=tuple(imports),
        content_lines=_join_blocks(blocks),
        pragmas=("PatternSynonyms",),
    )


def build_shared_module_spec(shared: Module) -> ModuleSpec:
    imports = list(RUNTIME_IMPORTS)
    if _has_functions(shared.entries):
        imports.append(FFI_MODULE)
    return ModuleSpec(
        module_name=shared.name,
        sections=None,
        imports=tuple(imports),
        content_lines=_join_blocks(render_entry(entry) for entry in shared.entries),
        pragmas=("PatternSynonyms",),
    )


def collect_invokers(modules: Iterable[Module]) -> dict[str, str]:
    """Map each distinct dynamic invoker name to its FFI signature.

    Raises:
        ValueError: If two different ABIs produce the same invoker name.
    """
    invokers: dict[str, str] = {}
    for module in modules:
        for entry in module.entries:
            if not isinstance(entry.entity, Function):
                continue
            name = ffi_invoker_name(entry.entity)
            signature = ffi_invoker_signature(entry.entity)
            if invokers.setdefault(name, signature) != signature:
                raise ValueError(
                    f"Invoker {name} maps to both {invokers[name]!r} and {signature!r}"
                )
    return dict(sorted(invokers.items()))


def build_ffi_module_spec(modules: Iterable[Module]) -> ModuleSpec:
    invokers = collect_invokers(modules)
    blocks = [
        ['foreign import ccall "dynamic"', f"  {name} :: {signature}"]
        for name, signature in invokers.items()
    ]
    return ModuleSpec(
        module_name=FFI_MODULE,
        sections=(ExportSection("Invokers", tuple(invokers)),),
        imports=FFI_IMPORTS,
        content_lines=_join_blocks(blocks),
        pragmas=("ForeignFunctionInterface",),
    )


def build_gather_module_spec(gather: GatherModule) -> ModuleSpec:
    return ModuleSpec(
        module_name=gather.name,
        sections=(
            ExportSection(gather.title, tuple(f"module {m}" for m in gather.members)),
        ),
        imports=gather.members,
        content_lines=(),
    )


def build_module_specs(graph: ModuleGraph) -> tuple[ModuleSpec, ...]:
    """Assemble every ModuleSpec for a module graph.

    Order: shared module, FFI module, owner modules in graph order, prefix
    gathers, top-level gather.
    """
    specs = [
        build_shared_module_spec(graph.shared),
        build_ffi_module_spec(graph.modules.values()),
    ]
    for name, module in graph.modules.items():
        specs.append(build_owner_module_spec(module, graph.extension_modules.get(name)))
    specs.extend(build_gather_module_spec(gather) for gather in graph.gathers)
    specs.append(build_gather_module_spec(graph.top_gather))
    return tuple(specs)


# ===--- Pipeline ---=== #

_MAX_REPORTED_COLLISIONS = 10


def report_collisions(collisions: tuple[NameCollision, ...]) -> None:
    if not collisions:
        return
    print(
        f"  Warning: {len(collisions)} name collisions "
        "resolved by keeping the last declaration"
    )
    for collision in collisions[:_MAX_REPORTED_COLLISIONS]:
        print(
            f"    {collision.key.name}: {collision.previous_name} "
            f"({collision.previous_value}) replaced by {collision.name} "
            f"({collision.value})"
        )
    hidden = len(collisions) - _MAX_REPORTED_COLLISIONS
    if hidden > 0:
        print(f"    ... and {hidden} more")


def run_generate(config: GenerateConfig) -> PackageWriteResult:
    """Execute the complete generation pipeline for a GenerateConfig.

    Stages: parse -> entity table -> ownership -> partition -> shared ->
    gather -> assemble -> write -> summary. The module graph is complete
    before the first file is written.

    Raises:
        OSError: XML file not readable or filesystem write failure.
        ET.ParseError: Malformed gl.xml.
        ResolutionError: Registry inconsistent with the module layout.
        ValueError: Malformed ModuleSpec or conflicting invoker names.
    """
    print(f"Parsing: {config.gl_xml}")
    registry = load_registry(config.gl_xml, config.apis)
    print(
        f"  Registry: {len(registry.enums)} enums, {len(registry.commands)} commands, "
        f"{len(registry.features)} features, {len(registry.extensions)} extensions"
    )

    graph = build_module_graph(registry, config.reject_collisions)
    print(
        f"  Entities: {graph.table.constant_count} constants, "
        f"{graph.table.function_count} functions"
    )
    report_collisions(graph.table.collisions)
    print(
        f"  Modules: {len(graph.modules)} owner modules, "
        f"{len(graph.shared.entries)} shared entities, "
        f"{len(graph.gathers)} gather modules"
    )

    write_config = WriteConfig(source_label=config.gl_xml.name)
    module_specs = build_module_specs(graph)
    result = write_package(config.output_dir, write_config, module_specs)
    print(
        f"  Written: {len(result.files)} files, "
        f"{result.total_lines} lines to {result.output_dir}"
    )

    summary = build_generation_summary(write_config, graph, result)
    print_generation_summary(summary)

    return result


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class GenerationCounts:
    """Item counts derived from a module graph.

    Invariant: profile_modules + extension_modules == len(graph.modules).

    Attributes:
        constants: Canonical constants in the entity table.
        functions: Functions in the entity table.
        shared: Entities rendered in the shared module.
        collisions: Name collisions recorded while building the table.
        profile_modules: Version/profile modules (including empty ones).
        extension_modules: One per registry extension.
        gather_modules: Prefix gathers plus the top-level gather.
    """

    constants: int
    functions: int
    shared: int
    collisions: int
    profile_modules: int
    extension_modules: int
    gather_modules: int


@dataclass(frozen=True)
class GenerationSummary:
    source_label: str
    output_dir: str
    counts: GenerationCounts
    files: tuple[FileWriteResult, ...]


def build_generation_counts(graph: ModuleGraph) -> GenerationCounts:
    extension_count = sum(1 for name in graph.modules if name in graph.extension_modules)
    profile_count = sum(1 for name in graph.modules if name in PROFILE_MODULES)
    assert profile_count + extension_count == len(graph.modules), (
        f"Module count invariant violated: {profile_count}+{extension_count}"
        f"!={len(graph.modules)}"
    )
    return GenerationCounts(
        constants=graph.table.constant_count,
        functions=graph.table.function_count,
        shared=len(graph.shared.entries),
        collisions=len(graph.table.collisions),
        profile_modules=profile_count,
        extension_modules=extension_count,
        gather_modules=len(graph.gathers) + 1,
    )


def build_generation_summary(
    write_config: WriteConfig,
    graph: ModuleGraph,
    write_result: PackageWriteResult,
) -> GenerationSummary:
    return GenerationSummary(
        source_label=write_config.source_label,
        output_dir=str(write_result.output_dir),
        counts=build_generation_counts(graph),
        files=write_result.files,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary to the multi-section console string.

    Line counts use thousands separators. Returns a string with exactly one
    trailing newline.
    """
    counts = summary.counts

    def _row(label: str, value: int) -> str:
        return f"    {label:<14}{value:>6}"

    lines: list[str] = []
    lines.append("OpenGL bindings generated:")
    lines.append("")
    lines.append(f"  Source:     {summary.source_label}")
    lines.append(f"  Output:     {summary.output_dir}")
    lines.append("")
    lines.append("  Entities:")
    lines.append(_row("Constants:", counts.constants))
    lines.append(_row("Functions:", counts.functions))
    lines.append(_row("Shared:", counts.shared))
    lines.append(_row("Collisions:", counts.collisions))
    lines.append("")
    lines.append("  Modules:")
    lines.append(_row("Profile:", counts.profile_modules))
    lines.append(_row("Extension:", counts.extension_modules))
    lines.append(_row("Gather:", counts.gather_modules))

    total_lines = sum(f.line_count for f in summary.files)
    lines.append("")
    lines.append(f"  Total: {total_lines:,} lines across {len(summary.files)} files")
    lines.append("")

    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Main generation ---=== #


def main():
    try:
        config = build_config()
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        run_generate(config)
    except ResolutionError as err:
        print(f"Resolution error [{err.code}]: {err.message}")
        raise SystemExit(1) from err
    except (OSError, ET.ParseError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
