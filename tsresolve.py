"""Type registry and import resolver for protobuf -> TypeScript generation.

Builds a per-run registry of every message, enum and map entry declared in a
protobuf descriptor set, then computes the import statements each generated
TypeScript module needs in order to reference types declared in other files.

Usage:
    protoc --include_imports --descriptor_set_out=api.pb -I proto proto/api/*.proto
    tsresolve --descriptor-set api.pb --file api/v1/service.proto --import-root-alias @gen
"""

import argparse
import glob
import json
import logging
import os
import posixpath
import re
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from google.protobuf import descriptor_pb2
from google.protobuf.compiler import plugin_pb2
from google.protobuf.message import DecodeError

PROTO_SUFFIX = ".proto"
DEFAULT_OUTPUT_SUFFIX = ".ts"

PARAM_IMPORT_ROOT = "ts_import_root"
PARAM_IMPORT_ROOT_ALIAS = "ts_import_root_alias"
KNOWN_PARAMETERS = {PARAM_IMPORT_ROOT, PARAM_IMPORT_ROOT_ALIAS}

_LOGGER_NAME = "tsresolve"
logger = logging.getLogger(_LOGGER_NAME)


# ===--- Logging ---=== #


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger under the tsresolve hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def configure_logging(*, verbose: bool = False) -> logging.Logger:
    """Install a single stderr handler on the tsresolve logger.

    Existing handlers are removed first so repeated invocations in one
    process do not duplicate output.
    """
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger(_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False

    for handler in list(root.handlers):
        root.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(
        logging.Formatter("[tsresolve] %(levelname)s %(message)s")
    )
    root.addHandler(stream_handler)
    return root


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class ResolveConfig:
    """Validated command-line configuration.

    Exactly one of descriptor_set / request is set. import_root and
    import_root_alias are None when not given on the command line; they may
    still be supplied by CodeGeneratorRequest parameters.
    """

    descriptor_set: Path | None
    request: Path | None
    files: tuple[str, ...]
    import_root: Path | None
    import_root_alias: str | None
    output_suffix: str = DEFAULT_OUTPUT_SUFFIX
    json_output: bool = False
    verbose: bool = False


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "MISSING_INPUT",
    "CONFLICT_INPUTS",
    "INVALID_IMPORT_ROOT",
    "INVALID_ALIAS",
    "INVALID_SUFFIX",
    "INVALID_PARAMETER",
    "UNKNOWN_FILE",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


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


def validate_import_root_alias(alias: str | None, source: str) -> str | None:
    if alias is None:
        return None
    if not alias or alias.endswith("/"):
        raise ConfigError(
            "INVALID_ALIAS",
            f"Invalid import root alias from {source}: {alias!r}",
            "Use a non-empty alias without a trailing slash, e.g. @gen.",
        )
    return alias


def validate_output_suffix(suffix: str) -> str:
    if len(suffix) > 1 and suffix.startswith("."):
        return suffix
    raise ConfigError(
        "INVALID_SUFFIX",
        f"Invalid output suffix: {suffix!r}",
        "The suffix must start with '.', e.g. .ts or .pb.ts.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resolve cross-file TypeScript imports for protobuf descriptors"
    )

    input_group = parser.add_mutually_exclusive_group()
    input_group.add_argument("--descriptor-set", type=Path, default=None)
    input_group.add_argument("--request", type=Path, default=None)

    parser.add_argument("--file", action="append", default=None)
    parser.add_argument("--import-root", type=Path, default=None)
    parser.add_argument("--import-root-alias", type=str, default=None)
    parser.add_argument("--output-suffix", type=str, default=DEFAULT_OUTPUT_SUFFIX)
    parser.add_argument("--json", action="store_true", default=False)
    parser.add_argument("--verbose", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> ResolveConfig:
    if args.descriptor_set is not None and args.request is not None:
        raise ConfigError(
            "CONFLICT_INPUTS",
            "Cannot combine --descriptor-set with --request.",
            "Pass either a FileDescriptorSet or a CodeGeneratorRequest.",
        )
    if args.descriptor_set is None and args.request is None:
        raise ConfigError(
            "MISSING_INPUT",
            "No descriptor input given.",
            "Build one with:\n"
            "  protoc --include_imports --descriptor_set_out=api.pb -I proto proto/*.proto\n"
            "then pass --descriptor-set api.pb",
        )

    if args.descriptor_set is not None:
        descriptor_set = validate_path_exists(args.descriptor_set, "--descriptor-set")
        request = None
    else:
        descriptor_set = None
        request = validate_path_exists(args.request, "--request")

    import_root = (
        validate_path_exists(args.import_root, "--import-root")
        if args.import_root is not None
        else None
    )

    return ResolveConfig(
        descriptor_set=descriptor_set,
        request=request,
        files=tuple(args.file) if args.file else (),
        import_root=import_root,
        import_root_alias=validate_import_root_alias(
            args.import_root_alias, "--import-root-alias"
        ),
        output_suffix=validate_output_suffix(args.output_suffix),
        json_output=bool(args.json),
        verbose=bool(args.verbose),
    )


def build_config(argv: list[str] | None = None) -> ResolveConfig:
    return validate_config(parse_args(argv))


def parse_plugin_parameters(parameter: str) -> dict[str, str]:
    """Parse a CodeGeneratorRequest parameter string.

    The string is a comma-separated list of key=value pairs, as passed by
    ``protoc --ts_opt=ts_import_root=...``. Keys other than the ones in
    KNOWN_PARAMETERS belong to other generator stages and are skipped.

    Raises:
        ConfigError: INVALID_PARAMETER for a pair without '=' or with an
            empty key.
    """
    params: dict[str, str] = {}
    if not parameter:
        return params
    for part in parameter.split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError(
                "INVALID_PARAMETER",
                f"Malformed generator parameter: {part!r}",
                "Pass parameters as key=value pairs separated by commas.",
            )
        if key not in KNOWN_PARAMETERS:
            logger.debug("Ignoring generator parameter %s", key)
            continue
        params[key] = value.strip()
    return params


def resolve_import_root(raw: Path | None) -> Path:
    """Return the absolute import root, defaulting to the working directory."""
    try:
        candidate = Path.cwd() if raw is None else Path(raw)
        return candidate.resolve()
    except (OSError, RuntimeError) as err:
        raise ConfigError(
            "INVALID_IMPORT_ROOT",
            f"Cannot make import root absolute: {raw if raw is not None else '.'}: {err}",
            "Pass an existing directory with --import-root.",
        ) from err


# ===--- Resolution errors ---=== #


class ResolutionError(Exception):
    """Fatal error raised while building the registry or resolving imports."""


class TypeLookupError(ResolutionError):
    def __init__(self, type_name: str, file_name: str | None = None):
        where = f" (referenced from {file_name})" if file_name else ""
        super().__init__(f"cannot find type info for {type_name}{where}")
        self.type_name = type_name
        self.file_name = file_name


class FileLocationError(ResolutionError):
    def __init__(self, message: str, current_file: str, target_file: str):
        super().__init__(f"{message} [current: {current_file}, target: {target_file}]")
        self.message = message
        self.current_file = current_file
        self.target_file = target_file


# ===--- Naming scheme ---=== #

_WORD_SPLIT_RE = re.compile(r"[^0-9A-Za-z]+")


def to_camel(text: str) -> str:
    """Upper-case the first letter of every alphanumeric run and join them."""
    return "".join(
        word[:1].upper() + word[1:] for word in _WORD_SPLIT_RE.split(text) if word
    )


def package_level_identifier(parents: Sequence[str], name: str) -> str:
    """Flat identifier for a declaration nested inside `parents`.

    TypeScript modules cannot nest namespaces the way protobuf messages nest,
    so Outer.Middle.Inner becomes OuterMiddleInner.
    """
    return "".join(parents) + name


def parent_prefix(parents: Sequence[str]) -> str:
    if not parents:
        return ""
    return ".".join(parents) + "."


def qualify(package: str, parents: Sequence[str], name: str) -> str:
    package_prefix = f".{package}." if package else "."
    return package_prefix + parent_prefix(parents) + name


def is_external(fully_qualified_type_name: str, current_package: str) -> bool:
    """Return True when a type is declared outside current_package.

    Only package-rooted names (leading '.') can be external. The package
    prefix matches only when followed by '.' or end-of-string, so ".pkg2.Foo"
    is external to "pkg" while ".pkg.Foo" is not. For an empty package the
    root '.' is the prefix and nothing is external; cross-file references
    from package-less files are picked up by
    collect_same_package_dependencies.
    """
    if not fully_qualified_type_name.startswith("."):
        return False
    if not current_package:
        return False
    package_root = "." + current_package
    if fully_qualified_type_name == package_root:
        return False
    return not fully_qualified_type_name.startswith(package_root + ".")


def strip_proto_suffix(file_name: str) -> str:
    return file_name.removesuffix(PROTO_SUFFIX)


def generated_file_name(
    proto_file: str, output_suffix: str = DEFAULT_OUTPUT_SUFFIX
) -> str:
    """Map a declaring .proto path to the path of its generated module."""
    return strip_proto_suffix(proto_file) + output_suffix


def strip_output_suffix(path: str, output_suffix: str = DEFAULT_OUTPUT_SUFFIX) -> str:
    return path.removesuffix(output_suffix)


def module_identifier(package: str, file_name: str) -> str:
    """Name bound by ``import * as <name>`` for every type from one file.

    CamelCased package parts followed by the CamelCased file path without
    its .proto extension: ("foo.bar", "dir/my_file.proto") -> FooBarDirMyFile.
    The directory is kept so same-named files in one package stay distinct.
    Separators are folded away, so distinct pairs can still share a name;
    resolve_file_dependencies suffixes clashes within one generated file.
    """
    package_part = "".join(to_camel(part) for part in package.split(".")) if package else ""
    return package_part + to_camel(strip_proto_suffix(file_name))


# ===--- Registry data model ---=== #

_FDP = descriptor_pb2.FieldDescriptorProto

SCALAR_TYPE_NAMES: dict[int, str] = {
    _FDP.TYPE_DOUBLE: "double",
    _FDP.TYPE_FLOAT: "float",
    _FDP.TYPE_INT64: "int64",
    _FDP.TYPE_UINT64: "uint64",
    _FDP.TYPE_INT32: "int32",
    _FDP.TYPE_FIXED64: "fixed64",
    _FDP.TYPE_FIXED32: "fixed32",
    _FDP.TYPE_BOOL: "bool",
    _FDP.TYPE_STRING: "string",
    _FDP.TYPE_BYTES: "bytes",
    _FDP.TYPE_UINT32: "uint32",
    _FDP.TYPE_SFIXED32: "sfixed32",
    _FDP.TYPE_SFIXED64: "sfixed64",
    _FDP.TYPE_SINT32: "sint32",
    _FDP.TYPE_SINT64: "sint64",
}


class TypeKind(Enum):
    MESSAGE = "message"
    ENUM = "enum"
    MAP_ENTRY = "map_entry"

    @property
    def proto_type(self) -> int:
        """FieldDescriptorProto.Type a field referencing this kind carries."""
        if self is TypeKind.ENUM:
            return _FDP.TYPE_ENUM
        return _FDP.TYPE_MESSAGE


@dataclass(frozen=True)
class MapEntryType:
    """Key or value of a synthetic map entry.

    Attributes:
        type: Fully-qualified type name for message/enum values, or the proto
            scalar name (e.g. "string", "int64").
        is_external: True when the type is declared outside the package of
            the map field.
    """

    type: str
    is_external: bool = False


@dataclass(frozen=True)
class TypeInformation:
    """Declaration metadata for one message, enum or map entry.

    Attributes:
        fully_qualified_name: Package-rooted dotted path, e.g. ".pkg.Outer.Inner".
        package: Declaring proto package, possibly empty.
        file: Declaring .proto path. TypeScript modules are per file, so this
            decides which import a reference needs.
        package_identifier: Identifier inside the generated module, with the
            enclosing type names prefixed ("OuterInner").
        local_identifier: Identifier inside the enclosing type ("Inner").
        kind: Message, enum or map entry.
        key_type: Key descriptor, map entries only.
        value_type: Value descriptor, map entries only.
    """

    fully_qualified_name: str
    package: str
    file: str
    package_identifier: str
    local_identifier: str
    kind: TypeKind
    key_type: MapEntryType | None = None
    value_type: MapEntryType | None = None

    @property
    def is_map_entry(self) -> bool:
        return self.kind is TypeKind.MAP_ENTRY

    @property
    def proto_type(self) -> int:
        return self.kind.proto_type


class TypeRegistry:
    """Per-run table of declared types keyed by fully-qualified name.

    Constructed once per run and passed explicitly to the analysis and
    resolution stages; discarded with the run. Entries are never mutated after
    registration. Registering an existing name replaces it (protobuf already
    guarantees fully-qualified names are unique).
    """

    def __init__(self) -> None:
        self.types: dict[str, TypeInformation] = {}

    def register(self, fully_qualified_name: str, info: TypeInformation) -> None:
        self.types[fully_qualified_name] = info

    def lookup(self, fully_qualified_name: str) -> TypeInformation | None:
        return self.types.get(fully_qualified_name)

    def require(
        self, fully_qualified_name: str, file_name: str | None = None
    ) -> TypeInformation:
        """Return the entry for a name collected during analysis.

        Raises:
            TypeLookupError: The name was never registered. Analysis and the
                registry disagree, which is fatal for the whole run.
        """
        info = self.types.get(fully_qualified_name)
        if info is None:
            raise TypeLookupError(fully_qualified_name, file_name)
        return info

    def __contains__(self, fully_qualified_name: object) -> bool:
        return fully_qualified_name in self.types

    def __len__(self) -> int:
        return len(self.types)

    def __iter__(self) -> Iterator[str]:
        return iter(self.types)


@dataclass(frozen=True)
class Dependency:
    """One ``import * as <module_identifier> from "<source_file>"`` statement."""

    module_identifier: str
    source_file: str


@dataclass
class FileData:
    """Per-file analysis output, completed in place by the resolver.

    Attributes:
        name: Declaring .proto path.
        package: Proto package of the file.
        output_name: Path of the generated module, relative to the output root.
        declared_types: Fully-qualified names declared here, in order.
        external_dependencies: Referenced names the resolver must import.
        package_non_scalar_types: Same-package references; the ones declared
            in another file are moved into external_dependencies.
        dependencies: Resolved imports, sorted by module identifier.
    """

    name: str
    package: str
    output_name: str
    declared_types: list[str] = field(default_factory=list)
    external_dependencies: list[str] = field(default_factory=list)
    package_non_scalar_types: list[str] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)


# ===--- Per-file analysis ---=== #


def _track_reference(file_data: FileData, type_name: str) -> None:
    if is_external(type_name, file_data.package):
        target = file_data.external_dependencies
    else:
        target = file_data.package_non_scalar_types
    if type_name not in target:
        target.append(type_name)


def _map_entry_type(field_proto: _FDP, package: str) -> MapEntryType:
    if field_proto.type_name:
        return MapEntryType(
            type=field_proto.type_name,
            is_external=is_external(field_proto.type_name, package),
        )
    return MapEntryType(type=SCALAR_TYPE_NAMES[field_proto.type])


def _register_enum(
    registry: TypeRegistry,
    file_data: FileData,
    enum_proto: descriptor_pb2.EnumDescriptorProto,
    parents: list[str],
) -> None:
    fq_name = qualify(file_data.package, parents, enum_proto.name)
    registry.register(
        fq_name,
        TypeInformation(
            fully_qualified_name=fq_name,
            package=file_data.package,
            file=file_data.name,
            package_identifier=package_level_identifier(parents, enum_proto.name),
            local_identifier=enum_proto.name,
            kind=TypeKind.ENUM,
        ),
    )
    file_data.declared_types.append(fq_name)


def _analyse_message(
    registry: TypeRegistry,
    file_data: FileData,
    message: descriptor_pb2.DescriptorProto,
    parents: list[str],
) -> None:
    fq_name = qualify(file_data.package, parents, message.name)
    key_type = value_type = None
    kind = TypeKind.MESSAGE
    if message.options.map_entry:
        kind = TypeKind.MAP_ENTRY
        fields_by_number = {f.number: f for f in message.field}
        if 1 not in fields_by_number or 2 not in fields_by_number:
            raise ResolutionError(
                f"map entry {fq_name} in {file_data.name} lacks a key or value field"
            )
        key_type = _map_entry_type(fields_by_number[1], file_data.package)
        value_type = _map_entry_type(fields_by_number[2], file_data.package)

    registry.register(
        fq_name,
        TypeInformation(
            fully_qualified_name=fq_name,
            package=file_data.package,
            file=file_data.name,
            package_identifier=package_level_identifier(parents, message.name),
            local_identifier=message.name,
            kind=kind,
            key_type=key_type,
            value_type=value_type,
        ),
    )
    file_data.declared_types.append(fq_name)

    for field_proto in message.field:
        if field_proto.type_name:
            _track_reference(file_data, field_proto.type_name)

    nested_parents = [*parents, message.name]
    for enum_proto in message.enum_type:
        _register_enum(registry, file_data, enum_proto, nested_parents)
    for nested in message.nested_type:
        _analyse_message(registry, file_data, nested, nested_parents)


def analyse_file(
    registry: TypeRegistry,
    file_proto: descriptor_pb2.FileDescriptorProto,
    output_suffix: str = DEFAULT_OUTPUT_SUFFIX,
) -> FileData:
    """Register every declaration of one file and collect its references.

    Messages, enums and map entries at any nesting depth are registered.
    Field type names and service method input/output types are split into
    external (other package) and same-package references.

    Args:
        registry: Run registry to populate.
        file_proto: Decoded descriptor of one .proto file.
        output_suffix: Suffix of generated modules, e.g. ".ts".

    Returns:
        FileData with declared_types, external_dependencies and
        package_non_scalar_types filled; dependencies still empty.
    """
    file_data = FileData(
        name=file_proto.name,
        package=file_proto.package,
        output_name=generated_file_name(file_proto.name, output_suffix),
    )

    for enum_proto in file_proto.enum_type:
        _register_enum(registry, file_data, enum_proto, [])
    for message in file_proto.message_type:
        _analyse_message(registry, file_data, message, [])
    for service in file_proto.service:
        for method in service.method:
            for type_name in (method.input_type, method.output_type):
                if type_name:
                    _track_reference(file_data, type_name)

    return file_data


def analyse(
    registry: TypeRegistry,
    file_protos: Iterable[descriptor_pb2.FileDescriptorProto],
    output_suffix: str = DEFAULT_OUTPUT_SUFFIX,
) -> dict[str, FileData]:
    """Analyse every file, dependencies included, in input order."""
    files: dict[str, FileData] = {}
    for file_proto in file_protos:
        files[file_proto.name] = analyse_file(registry, file_proto, output_suffix)
    logger.debug("Registered %d types from %d files", len(registry), len(files))
    return files


def collect_same_package_dependencies(
    registry: TypeRegistry, files: Mapping[str, FileData]
) -> None:
    """Queue same-package references declared in another file for import.

    Packages can span several files while TypeScript imports are per module,
    so these need an import just like references to other packages.

    Raises:
        TypeLookupError: A same-package reference is not registered.
    """
    for file_data in files.values():
        for type_name in file_data.package_non_scalar_types:
            info = registry.require(type_name, file_data.name)
            if info.file == file_data.name:
                continue
            if type_name not in file_data.external_dependencies:
                file_data.external_dependencies.append(type_name)


# ===--- File location ---=== #


class FileLocator(Protocol):
    def find(self, file_name: str) -> list[Path]:
        """Return absolute paths of every file with this basename, first match first."""
        ...


class GlobFileLocator:
    """Searches the import root recursively. Matches are sorted for stable output."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def find(self, file_name: str) -> list[Path]:
        pattern = glob.escape(file_name)
        return sorted(path for path in self.root.rglob(pattern) if path.is_file())


class MappingFileLocator:
    """Fixed basename -> paths table. Never touches the filesystem."""

    def __init__(self, paths: Mapping[str, Sequence[Path]]) -> None:
        self.paths = {name: [Path(p) for p in found] for name, found in paths.items()}

    def find(self, file_name: str) -> list[Path]:
        return list(self.paths.get(file_name, ()))


# ===--- Dependency resolution ---=== #


@dataclass(frozen=True)
class ResolverSettings:
    """Inputs to path computation, fixed before analysis starts.

    Attributes:
        files_to_generate: .proto paths generated in this run. References to
            these get plain relative imports; everything else is searched
            for under import_root.
        import_root: Absolute directory generated modules live under.
        import_root_alias: Replaces import_root in paths of pre-generated
            modules, e.g. "@gen". None keeps those paths relative.
        output_suffix: Suffix of generated modules, stripped from imports.
    """

    files_to_generate: frozenset[str]
    import_root: Path
    import_root_alias: str | None = None
    output_suffix: str = DEFAULT_OUTPUT_SUFFIX


def build_resolver_settings(
    config: ResolveConfig,
    files_to_generate: Iterable[str],
    parameters: Mapping[str, str] | None = None,
) -> ResolverSettings:
    """Merge command-line config with generator parameters. Flags win."""
    parameters = parameters or {}

    raw_root = config.import_root
    root_from_parameter = raw_root is None and bool(parameters.get(PARAM_IMPORT_ROOT))
    if root_from_parameter:
        raw_root = Path(parameters[PARAM_IMPORT_ROOT])
    import_root = resolve_import_root(raw_root)
    if root_from_parameter and not import_root.is_dir():
        raise ConfigError(
            "INVALID_IMPORT_ROOT",
            f"Import root from {PARAM_IMPORT_ROOT} is not a directory: {import_root}",
            "Point ts_import_root at the directory holding generated modules.",
        )

    alias = config.import_root_alias
    if alias is None and PARAM_IMPORT_ROOT_ALIAS in parameters:
        alias = validate_import_root_alias(
            parameters[PARAM_IMPORT_ROOT_ALIAS], PARAM_IMPORT_ROOT_ALIAS
        )

    return ResolverSettings(
        files_to_generate=frozenset(files_to_generate),
        import_root=import_root,
        import_root_alias=alias,
        output_suffix=config.output_suffix,
    )


def explicit_relative(path: str) -> str:
    """Force a './' or '../' prefix so the specifier never looks like a package."""
    posix = path.replace(os.sep, "/")
    if posix.startswith("../") or posix.startswith("./"):
        return posix
    return "./" + posix


def relative_import_path(current_output: str, target_output: str) -> str:
    """Import path from one generated module to another generated in the same run."""
    current_dir = posixpath.dirname(current_output) or "."
    return explicit_relative(posixpath.relpath(target_output, current_dir))


def alias_import_path(found: Path, import_root: Path, alias: str) -> str:
    """Replace the import root prefix of found with alias.

    Raises:
        ValueError: found does not live under import_root.
    """
    relative = found.relative_to(import_root)
    return f"{alias}/{relative.as_posix()}"


def filesystem_relative_path(found: Path, current_abs: Path) -> str:
    relative = os.path.relpath(found, current_abs.parent)
    return explicit_relative(Path(relative).as_posix())


def locate_pre_generated(
    file_data: FileData,
    info: TypeInformation,
    settings: ResolverSettings,
    locator: FileLocator,
) -> Path:
    """Find the already-generated module for a file outside this run.

    The first match wins. Extra matches are logged as a warning.

    Raises:
        FileLocationError: The search failed or found nothing.
    """
    target_name = posixpath.basename(generated_file_name(info.file, settings.output_suffix))
    try:
        matches = locator.find(target_name)
    except OSError as err:
        raise FileLocationError(
            f"error searching {settings.import_root} for {target_name}: {err}",
            file_data.name,
            info.file,
        ) from err

    if not matches:
        raise FileLocationError(
            f"no generated module named {target_name} under {settings.import_root}",
            file_data.name,
            info.file,
        )
    if len(matches) > 1:
        logger.warning(
            "%s: %d candidates for %s (%s), using %s",
            file_data.name,
            len(matches),
            target_name,
            ", ".join(str(m) for m in matches),
            matches[0],
        )
    return matches[0]


def compute_source_file(
    file_data: FileData,
    info: TypeInformation,
    settings: ResolverSettings,
    locator: FileLocator,
) -> str:
    """Return the import specifier for the file that declares info.

    In-run targets get a path relative to the current module. Pre-generated
    targets are located under the import root, then either aliased or made
    relative. The output suffix is stripped in every case.

    Raises:
        FileLocationError: The target could not be located or the path could
            not be computed.
    """
    try:
        if info.file in settings.files_to_generate:
            target = generated_file_name(info.file, settings.output_suffix)
            path = relative_import_path(file_data.output_name, target)
        else:
            found = locate_pre_generated(file_data, info, settings, locator)
            if settings.import_root_alias:
                path = alias_import_path(
                    found, settings.import_root, settings.import_root_alias
                )
            else:
                current_abs = settings.import_root / file_data.output_name
                path = filesystem_relative_path(found, current_abs)
    except (OSError, ValueError) as err:
        raise FileLocationError(
            f"error computing import path: {err}", file_data.name, info.file
        ) from err

    logger.debug("%s: %s -> %s", file_data.name, info.file, path)
    return strip_output_suffix(path, settings.output_suffix)


def resolve_file_dependencies(
    registry: TypeRegistry,
    file_data: FileData,
    settings: ResolverSettings,
    locator: FileLocator,
) -> list[Dependency]:
    """Compute one Dependency per distinct (package, file) the file references.

    Bindings that clash after CamelCasing get a numeric suffix, so every
    import in one generated module binds a distinct name. Results are sorted
    by (module_identifier, source_file), appended to file_data.dependencies,
    and returned.

    Raises:
        TypeLookupError: A referenced name is not registered.
        FileLocationError: Propagated from compute_source_file.
    """
    dependencies: dict[str, Dependency] = {}
    for type_name in file_data.external_dependencies:
        info = registry.require(type_name, file_data.name)
        key = f"{info.package}|{info.file}"
        if key in dependencies:
            continue
        dependencies[key] = Dependency(
            module_identifier=module_identifier(info.package, info.file),
            source_file=compute_source_file(file_data, info, settings, locator),
        )

    ordered = sorted(
        _disambiguate_identifiers(file_data, dependencies.values()),
        key=lambda dep: (dep.module_identifier, dep.source_file),
    )
    file_data.dependencies.extend(ordered)
    return ordered


def _disambiguate_identifiers(
    file_data: FileData, dependencies: Iterable[Dependency]
) -> list[Dependency]:
    """Give every import of one file a distinct binding.

    module_identifier folds separators away, so ("foo.bar", "baz.proto") and
    ("foo", "bar/baz.proto") both yield FooBarBaz. Within a base identifier
    the first import by source_file keeps the name; later ones get the
    smallest numeric suffix not already bound in this file.
    """
    ordered = sorted(dependencies, key=lambda dep: (dep.module_identifier, dep.source_file))
    base_names = {dep.module_identifier for dep in ordered}
    bound: set[str] = set()
    unique: list[Dependency] = []
    for dep in ordered:
        name = dep.module_identifier
        if name in bound:
            suffix = 2
            while f"{name}{suffix}" in base_names or f"{name}{suffix}" in bound:
                suffix += 1
            logger.debug(
                "%s: %s already bound, importing %s as %s%d",
                file_data.name,
                name,
                dep.source_file,
                name,
                suffix,
            )
            dep = Dependency(module_identifier=f"{name}{suffix}", source_file=dep.source_file)
        bound.add(dep.module_identifier)
        unique.append(dep)
    return unique


def collect_external_dependencies(
    registry: TypeRegistry,
    files: Mapping[str, FileData],
    settings: ResolverSettings,
    locator: FileLocator | None = None,
) -> None:
    """Resolve imports for every file in the generate set.

    Files present only as dependencies are not resolved: nothing is emitted
    for them.
    """
    if locator is None:
        locator = GlobFileLocator(settings.import_root)
    for file_data in files.values():
        if file_data.name not in settings.files_to_generate:
            continue
        resolve_file_dependencies(registry, file_data, settings, locator)


# ===--- Pipeline ---=== #


@dataclass(frozen=True)
class ResolutionResult:
    """Registry and per-file imports for one run."""

    registry: TypeRegistry
    files: dict[str, FileData]
    settings: ResolverSettings

    @property
    def generated_files(self) -> list[FileData]:
        """Files in the generate set, in descriptor order."""
        return [
            file_data
            for name, file_data in self.files.items()
            if name in self.settings.files_to_generate
        ]

    @property
    def import_count(self) -> int:
        return sum(len(f.dependencies) for f in self.generated_files)


def resolve_descriptors(
    file_protos: Sequence[descriptor_pb2.FileDescriptorProto],
    settings: ResolverSettings,
    locator: FileLocator | None = None,
) -> ResolutionResult:
    """Run analysis and resolution over a complete descriptor set.

    Args:
        file_protos: Every file of the run, dependencies included, so each
            referenced type can be registered.
        settings: Generate set, import root, alias and suffix.
        locator: Search for pre-generated modules. Defaults to a
            GlobFileLocator rooted at settings.import_root.

    Returns:
        ResolutionResult with the populated registry and per-file imports.

    Raises:
        ResolutionError: Any lookup or location failure. The whole run is
            invalid; no partial result is returned.
    """
    registry = TypeRegistry()
    files = analyse(registry, file_protos, settings.output_suffix)
    collect_same_package_dependencies(registry, files)
    collect_external_dependencies(registry, files, settings, locator)
    return ResolutionResult(registry=registry, files=files, settings=settings)


def load_descriptor_set(path: Path) -> list[descriptor_pb2.FileDescriptorProto]:
    descriptor_set = descriptor_pb2.FileDescriptorSet()
    descriptor_set.ParseFromString(Path(path).read_bytes())
    return list(descriptor_set.file)


def load_generator_request(path: Path) -> plugin_pb2.CodeGeneratorRequest:
    request = plugin_pb2.CodeGeneratorRequest()
    request.ParseFromString(Path(path).read_bytes())
    return request


def select_files_to_generate(
    file_names: Sequence[str], requested: Sequence[str]
) -> tuple[str, ...]:
    """Validate the requested generate set; empty means every file."""
    if not requested:
        return tuple(file_names)
    known = set(file_names)
    for name in requested:
        if name not in known:
            raise ConfigError(
                "UNKNOWN_FILE",
                f"File to generate is not in the descriptor input: {name}",
                "Use the path as protoc reports it, relative to the -I root.",
            )
    return tuple(dict.fromkeys(requested))


def run_resolve(
    config: ResolveConfig, locator: FileLocator | None = None
) -> ResolutionResult:
    """Load descriptors, fix settings, then analyse and resolve.

    Raises:
        ConfigError: Unknown file to generate, bad parameter, bad import root.
        OSError: Input not readable.
        DecodeError: Input is not a serialized descriptor message.
        ResolutionError: Propagated from resolve_descriptors.
    """
    if config.request is not None:
        logger.info("Reading request: %s", config.request)
        request = load_generator_request(config.request)
        file_protos = list(request.proto_file)
        requested = config.files or tuple(request.file_to_generate)
        parameters = parse_plugin_parameters(request.parameter)
    else:
        logger.info("Reading descriptor set: %s", config.descriptor_set)
        file_protos = load_descriptor_set(config.descriptor_set)
        requested = config.files
        parameters = {}

    to_generate = select_files_to_generate([f.name for f in file_protos], requested)
    settings = build_resolver_settings(config, to_generate, parameters)
    logger.info(
        "  Input: %d files, %d to generate, import root %s",
        len(file_protos),
        len(to_generate),
        settings.import_root,
    )

    result = resolve_descriptors(file_protos, settings, locator)
    logger.info(
        "  Resolved: %d types, %d imports", len(result.registry), result.import_count
    )
    return result


# ===--- Report ---=== #


def format_import_line(dependency: Dependency) -> str:
    return f'import * as {dependency.module_identifier} from "{dependency.source_file}"'


def format_report(files: Sequence[FileData], registry: TypeRegistry) -> str:
    """Render one block per generated file plus a summary line.

    Output format:
        b.proto -> b.ts
          import * as P1A from "./a"

        Resolved 1 imports across 1 files (2 types registered)
    """
    lines: list[str] = []
    for file_data in files:
        lines.append(f"{file_data.name} -> {file_data.output_name}")
        if not file_data.dependencies:
            lines.append("  (no imports)")
        for dependency in file_data.dependencies:
            lines.append(f"  {format_import_line(dependency)}")

    import_count = sum(len(f.dependencies) for f in files)
    lines.append("")
    lines.append(
        f"Resolved {import_count} imports across {len(files)} files"
        f" ({len(registry)} types registered)"
    )
    return "\n".join(lines) + "\n"


def report_as_dict(files: Sequence[FileData]) -> dict[str, object]:
    return {
        "files": {
            file_data.name: {
                "output": file_data.output_name,
                "package": file_data.package,
                "types": list(file_data.declared_types),
                "dependencies": [
                    {
                        "moduleIdentifier": dep.module_identifier,
                        "sourceFile": dep.source_file,
                    }
                    for dep in file_data.dependencies
                ],
            }
            for file_data in files
        }
    }


# ===--- Main ---=== #


def _print_config_error(err: ConfigError) -> None:
    print(f"Config error [{err.code}]: {err.message}")
    if err.suggestion:
        print(f"Hint: {err.suggestion}")


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
    except ConfigError as err:
        _print_config_error(err)
        raise SystemExit(1) from err

    configure_logging(verbose=config.verbose)

    try:
        result = run_resolve(config)
    except ConfigError as err:
        _print_config_error(err)
        raise SystemExit(1) from err
    except ResolutionError as err:
        print(f"Resolution error: {err}")
        raise SystemExit(1) from err
    except (OSError, DecodeError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err

    if config.json_output:
        print(json.dumps(report_as_dict(result.generated_files), indent=2))
    else:
        print(format_report(result.generated_files, result.registry), end="")


if __name__ == "__main__":
    main()
