import argparse
import logging
import sys
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import pytest
from google.protobuf import descriptor_pb2

TOOL_DIR = Path(__file__).resolve().parent.parent
if str(TOOL_DIR) not in sys.path:
    sys.path.insert(0, str(TOOL_DIR))

import tsresolve  # noqa: E402

FDP = descriptor_pb2.FieldDescriptorProto


@pytest.fixture
def make_field() -> Callable[..., descriptor_pb2.FieldDescriptorProto]:
    def _make_field(
        name: str,
        number: int,
        *,
        type_name: str | None = None,
        enum: bool = False,
        scalar: int = FDP.TYPE_STRING,
        repeated: bool = False,
    ) -> descriptor_pb2.FieldDescriptorProto:
        field_proto = descriptor_pb2.FieldDescriptorProto(
            name=name,
            number=number,
            label=FDP.LABEL_REPEATED if repeated else FDP.LABEL_OPTIONAL,
        )
        if type_name is None:
            field_proto.type = scalar
        else:
            field_proto.type = FDP.TYPE_ENUM if enum else FDP.TYPE_MESSAGE
            field_proto.type_name = type_name
        return field_proto

    return _make_field


@pytest.fixture
def make_message() -> Callable[..., descriptor_pb2.DescriptorProto]:
    def _make_message(
        name: str,
        *,
        fields: Sequence[descriptor_pb2.FieldDescriptorProto] = (),
        nested: Sequence[descriptor_pb2.DescriptorProto] = (),
        enums: Sequence[str] = (),
        map_entry: bool = False,
    ) -> descriptor_pb2.DescriptorProto:
        message = descriptor_pb2.DescriptorProto(name=name)
        message.field.extend(fields)
        message.nested_type.extend(nested)
        for enum_name in enums:
            message.enum_type.add(name=enum_name)
        if map_entry:
            message.options.map_entry = True
        return message

    return _make_message


@pytest.fixture
def make_file() -> Callable[..., descriptor_pb2.FileDescriptorProto]:
    def _make_file(
        name: str,
        package: str = "",
        *,
        messages: Sequence[descriptor_pb2.DescriptorProto] = (),
        enums: Sequence[str] = (),
        methods: Sequence[tuple[str, str, str]] = (),
    ) -> descriptor_pb2.FileDescriptorProto:
        file_proto = descriptor_pb2.FileDescriptorProto(name=name, package=package)
        file_proto.message_type.extend(messages)
        for enum_name in enums:
            file_proto.enum_type.add(name=enum_name)
        if methods:
            service = file_proto.service.add(name="Service")
            for method_name, input_type, output_type in methods:
                service.method.add(
                    name=method_name, input_type=input_type, output_type=output_type
                )
        return file_proto

    return _make_file


@pytest.fixture
def two_package_files(
    make_file: Callable[..., descriptor_pb2.FileDescriptorProto],
    make_message: Callable[..., descriptor_pb2.DescriptorProto],
    make_field: Callable[..., descriptor_pb2.FieldDescriptorProto],
) -> list[descriptor_pb2.FileDescriptorProto]:
    a = make_file("a.proto", "p1", messages=[make_message("Foo")])
    b = make_file(
        "b.proto",
        "p2",
        messages=[make_message("Bar", fields=[make_field("foo", 1, type_name=".p1.Foo")])],
    )
    return [a, b]


@pytest.fixture
def write_descriptor_set(
    tmp_path: Path,
) -> Callable[[Sequence[descriptor_pb2.FileDescriptorProto]], Path]:
    def _write(files: Sequence[descriptor_pb2.FileDescriptorProto]) -> Path:
        path = tmp_path / "descriptors.pb"
        descriptor_set = descriptor_pb2.FileDescriptorSet()
        descriptor_set.file.extend(files)
        path.write_bytes(descriptor_set.SerializeToString())
        return path

    return _write


@pytest.fixture
def make_args(tmp_path: Path) -> Callable[..., argparse.Namespace]:
    descriptor_set = tmp_path / "input.pb"
    descriptor_set.write_bytes(b"")

    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "descriptor_set": descriptor_set,
            "request": None,
            "file": None,
            "import_root": None,
            "import_root_alias": None,
            "output_suffix": ".ts",
            "json": False,
            "verbose": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args


@pytest.fixture
def settings_for() -> Callable[..., tsresolve.ResolverSettings]:
    def _settings_for(
        files_to_generate: Sequence[str],
        *,
        import_root: Path = Path("/abs/root"),
        alias: str | None = None,
        output_suffix: str = ".ts",
    ) -> tsresolve.ResolverSettings:
        return tsresolve.ResolverSettings(
            files_to_generate=frozenset(files_to_generate),
            import_root=import_root,
            import_root_alias=alias,
            output_suffix=output_suffix,
        )

    return _settings_for


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    # main() installs a stderr handler and turns propagation off; caplog needs it back on.
    yield
    for handler in list(tsresolve.logger.handlers):
        tsresolve.logger.removeHandler(handler)
    tsresolve.logger.propagate = True
    tsresolve.logger.setLevel(logging.NOTSET)
