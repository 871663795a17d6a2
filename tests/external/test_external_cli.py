from __future__ import annotations

from pathlib import Path
import json
import subprocess
import sys

from google.protobuf import descriptor_pb2


def _tool_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _run(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
    run_cwd = _tool_root() if cwd is None else cwd
    return subprocess.run(
        [sys.executable, str(_tool_root() / "tsresolve.py"), *args],
        cwd=run_cwd,
        capture_output=True,
        text=True,
        check=False,
    )


def _write_fixture_set(path: Path) -> Path:
    descriptor_set = descriptor_pb2.FileDescriptorSet()

    common = descriptor_set.file.add(name="common/money.proto", package="common")
    common.message_type.add(name="Money")
    common.enum_type.add(name="Currency")

    orders = descriptor_set.file.add(name="shop/orders.proto", package="shop")
    order = orders.message_type.add(name="Order")
    order.field.add(
        name="total",
        number=1,
        type=descriptor_pb2.FieldDescriptorProto.TYPE_MESSAGE,
        type_name=".common.Money",
    )
    order.field.add(
        name="currency",
        number=2,
        type=descriptor_pb2.FieldDescriptorProto.TYPE_ENUM,
        type_name=".common.Currency",
    )
    service = orders.service.add(name="Orders")
    service.method.add(name="Get", input_type=".shop.Order", output_type=".shop.Order")

    path.write_bytes(descriptor_set.SerializeToString())
    return path


def test_t_01_resolve_in_run_prints_one_import_per_module(tmp_path: Path) -> None:
    descriptors = _write_fixture_set(tmp_path / "shop.pb")

    result = _run(["--descriptor-set", str(descriptors)], cwd=tmp_path)

    assert result.returncode == 0
    assert "shop/orders.proto -> shop/orders.ts" in result.stdout
    assert result.stdout.count('import * as CommonCommonMoney from "../common/money"') == 1
    assert "Resolved 1 imports across 2 files (3 types registered)" in result.stdout
    assert "[tsresolve] INFO" in result.stderr


def test_t_02_pre_generated_module_is_found_under_import_root(tmp_path: Path) -> None:
    descriptors = _write_fixture_set(tmp_path / "shop.pb")
    generated = tmp_path / "node_modules" / "@acme" / "common"
    generated.mkdir(parents=True)
    (generated / "money.ts").write_text("export {};\n", encoding="utf-8")

    result = _run(
        [
            "--descriptor-set",
            str(descriptors),
            "--file",
            "shop/orders.proto",
            "--import-root",
            str(tmp_path / "node_modules"),
            "--import-root-alias",
            "~",
            "--json",
        ]
    )

    assert result.returncode == 0
    data = json.loads(result.stdout)
    assert data["files"]["shop/orders.proto"]["dependencies"] == [
        {"moduleIdentifier": "CommonCommonMoney", "sourceFile": "~/@acme/common/money"}
    ]


def test_t_03_missing_pre_generated_module_fails(tmp_path: Path) -> None:
    descriptors = _write_fixture_set(tmp_path / "shop.pb")

    result = _run(
        [
            "--descriptor-set",
            str(descriptors),
            "--file",
            "shop/orders.proto",
            "--import-root",
            str(tmp_path),
        ]
    )

    assert result.returncode == 1
    assert result.stdout.startswith("Resolution error:")
    assert "shop/orders.proto" in result.stdout
    assert "common/money.proto" in result.stdout


def test_t_04_missing_input_is_a_config_error() -> None:
    result = _run([])

    assert result.returncode == 1
    assert "Config error [MISSING_INPUT]" in result.stdout


def test_t_05_unknown_flag_returns_argparse_usage_code() -> None:
    result = _run(["--not-a-flag"])

    assert result.returncode == 2
