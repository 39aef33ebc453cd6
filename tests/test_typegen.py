"""Tests for generated type modules and the handler context."""

import ast
import json

from conftest import CONFIG, SCHEMA_AB
from livebuild.steps.config import parse_config
from livebuild.steps.context import build_handler_context
from livebuild.steps.db import build_db_schema
from livebuild.steps.gql import build_gql_schema
from livebuild.steps.schema import parse_schema
from livebuild.steps.typegen import HEADER, TypeGenerator, python_identifier


def config():
    return parse_config(json.dumps(CONFIG).encode())


def parsed():
    return parse_schema(SCHEMA_AB.encode())


def assert_valid_module(path):
    source = path.read_text(encoding="utf-8")
    assert source.startswith(f"# {HEADER}")
    ast.parse(source)
    return source


def test_python_identifier():
    assert python_identifier("Token") == "Token"
    assert python_identifier("my-contract") == "my_contract"
    assert python_identifier("1inch") == "_1inch"
    assert python_identifier("class") == "class_"


class TestTypeGenerator:
    def test_schema_file(self, tmp_path):
        gen = TypeGenerator(tmp_path / "generated")
        path = gen.generate_schema(build_gql_schema(parsed()))
        text = path.read_text()
        assert text.startswith(f"# {HEADER}")
        assert "type B" in text

    def test_entity_types(self, tmp_path):
        gen = TypeGenerator(tmp_path)
        source = assert_valid_module(gen.generate_entity_types(build_gql_schema(parsed())))
        assert "A = TypedDict('A'" in source
        assert "'amount': str" in source
        assert "'owner': Optional[str]" in source

    def test_contract_and_handler_types(self, tmp_path):
        gen = TypeGenerator(tmp_path)
        source = assert_valid_module(gen.generate_contract_types(config()))
        assert "class Token:" in source
        handlers = assert_valid_module(gen.generate_handler_types(config()))
        assert "'Token:Approval', 'Token:Transfer'" in handlers

    def test_context_type(self, tmp_path):
        gen = TypeGenerator(tmp_path)
        source = assert_valid_module(gen.generate_context_type(config(), build_db_schema(parsed())))
        assert "from .entities import A, B" in source
        assert "from .contracts import Token" in source
        assert "class Context(TypedDict):" in source

    def test_overwrite_leaves_no_temp_files(self, tmp_path):
        gen = TypeGenerator(tmp_path)
        gen.write_file("x.py", "A = 1")
        gen.write_file("x.py", "A = 2")
        assert [p.name for p in tmp_path.iterdir()] == ["x.py"]
        assert (tmp_path / "x.py").read_text().endswith("A = 2\n")


def test_handler_context():
    context = build_handler_context(config(), build_db_schema(parsed()))
    assert context.entity_names == ["A", "B"]
    assert context.entities["B"].columns == ["id", "amount", "owner"]
    assert context.handler_names == ["Token:Approval", "Token:Transfer"]
    assert context.contracts["Token"].networks[0].network == "mainnet"
